"""Sync engine configuration.

``SyncSettings`` is an immutable value object handed to each component's
constructor. ``load_settings`` layers, from lowest to highest precedence:

1. Model defaults
2. A JSON document stored under ``settings`` in the key-value settings store
3. ``ERP_SYNC_*`` environment variables (a ``.env`` file is loaded if present)

The ERP password is not part of the settings; see ``core.security.secrets``.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ENV_PREFIX = "ERP_SYNC_"
SETTINGS_KEY = "settings"
DEFAULT_ENV_PATH = Path(__file__).resolve().parents[1] / ".env"

DEFAULT_PAYMENT_METHOD_CODES: Dict[str, str] = {
    "bacs": "BT",
    "cheque": "CH",
    "cod": "CA",
    "paypal": "PP",
}


class SyncSettings(BaseModel):
    """Configuration for the sync engine."""

    model_config = ConfigDict(frozen=True)

    # Connection
    service_url: str = ""
    company_db: str = ""
    username: str = ""
    api_version: str = "v1"
    allow_http: bool = False
    verify_ssl: bool = True
    request_timeout: float = Field(60.0, gt=0)
    login_timeout: float = Field(30.0, gt=0)
    logout_timeout: float = Field(10.0, gt=0)
    max_attempts: int = Field(3, ge=1)

    # Orders and customers
    auto_sync_orders: bool = True
    auto_create_customers: bool = True
    syncable_statuses: List[str] = Field(default_factory=lambda: ["processing", "completed"])
    default_customer_code: str = "WALKIN"
    customer_code_prefix: str = "WEB"
    default_warehouse: str = ""
    default_tax_code: str = ""
    shipping_item_code: str = "SHIPPING"
    payment_method_codes: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_PAYMENT_METHOD_CODES))

    # Stock
    stock_sync_interval: int = Field(5, ge=1, le=1440, description="Minutes between full stock syncs")
    stock_batch_size: int = Field(50, ge=1, le=500)

    # Queue
    max_job_retries: int = Field(5, ge=1)

    # Logging
    log_level: str = "info"
    log_json: bool = False
    log_retention_days: int = Field(30, ge=1, le=365)

    @field_validator("service_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("company_db")
    @classmethod
    def _check_company_db(cls, value: str) -> str:
        if len(value) > 100:
            raise ValueError("Company database name is too long (max 100 characters).")
        return value

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        if len(value) > 50:
            raise ValueError("Username is too long (max 50 characters).")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in ("debug", "info", "warning", "error"):
            raise ValueError(f"Invalid log level: {value}")
        return value

    @field_validator("syncable_statuses")
    @classmethod
    def _normalize_statuses(cls, value: List[str]) -> List[str]:
        return [normalize_status(s) for s in value]

    @model_validator(mode="after")
    def _check_scheme(self) -> "SyncSettings":
        if self.service_url and not self.allow_http and not self.service_url.lower().startswith("https://"):
            raise ValueError("Service URL must use HTTPS.")
        return self

    @property
    def is_configured(self) -> bool:
        return bool(self.service_url and self.company_db and self.username)

    def is_syncable_status(self, status: str) -> bool:
        return normalize_status(status) in self.syncable_statuses


def normalize_status(status: str) -> str:
    """Lower-case an order status and strip a ``wc-`` style storage prefix."""
    status = (status or "").strip().lower()
    return status[3:] if status.startswith("wc-") else status


# =============================================================================
# Loading
# =============================================================================

def settings_from_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Collect ``ERP_SYNC_*`` variables as raw settings values.

    List and mapping fields accept JSON (``ERP_SYNC_SYNCABLE_STATUSES='["processing"]'``)
    or, for lists, a comma-separated string.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    for name in SyncSettings.model_fields:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        if name == "syncable_statuses":
            values[name] = _parse_list(raw)
        elif name == "payment_method_codes":
            values[name] = json.loads(raw)
        else:
            values[name] = raw
    return values


def load_settings(
    settings_store=None,
    env_path: Optional[Path] = DEFAULT_ENV_PATH,
    environ: Optional[Dict[str, str]] = None,
    **overrides: Any,
) -> SyncSettings:
    """Build settings from the settings store, environment and overrides.

    Args:
        settings_store: Object with ``get_setting(key)`` (optional)
        env_path: ``.env`` file to load, if it exists
        environ: Environment mapping (defaults to ``os.environ``)
        **overrides: Highest-precedence values

    Raises:
        pydantic.ValidationError: If the merged values are invalid
    """
    if env_path is not None and Path(env_path).exists():
        load_dotenv(env_path)

    values: Dict[str, Any] = {}
    if settings_store is not None:
        stored = settings_store.get_setting(SETTINGS_KEY)
        if stored:
            values.update(json.loads(stored) if isinstance(stored, str) else stored)
    values.update(settings_from_env(environ))
    values.update(overrides)
    return SyncSettings(**values)


def save_settings(settings_store, settings: SyncSettings) -> None:
    """Persist settings to the key-value store as JSON."""
    settings_store.set_setting(SETTINGS_KEY, settings.model_dump_json())


def _parse_list(raw: str) -> List[str]:
    raw = raw.strip()
    if raw.startswith("["):
        return list(json.loads(raw))
    return [part.strip() for part in raw.split(",") if part.strip()]
