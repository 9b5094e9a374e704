"""ERP error taxonomy.

Every failure raised by the connector and sync layers is an ``ERPError``
tagged with an ``ErrorKind`` and an explicit ``retryable`` flag. Callers
branch on those fields rather than on exception subclasses:

- CONNECTION: network, timeout, TLS. Transient, retried with backoff.
- AUTHENTICATION: credentials or session. Retryable only for an expired or
  missing session; invalid credentials, forbidden and license errors are fatal.
- API: the ERP rejected the request (4xx/5xx other than 401/403). Not retried
  by the client.
- VALIDATION: pre-flight data problems. Never sent over the network.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Category of an ERP error."""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    API = "api"
    VALIDATION = "validation"


# Authentication codes
SESSION_EXPIRED = "SESSION_EXPIRED"
NO_SESSION = "NO_SESSION"
INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
FORBIDDEN = "FORBIDDEN"
LICENSE_ERROR = "LICENSE_ERROR"
COMPANY_NOT_FOUND = "COMPANY_NOT_FOUND"
MALFORMED_SESSION = "MALFORMED_SESSION"

# Connection codes
TIMEOUT = "TIMEOUT"
UNREACHABLE = "UNREACHABLE"
SSL_ERROR = "SSL_ERROR"
MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"

# API / validation codes
NOT_FOUND = "NOT_FOUND"
UNKNOWN = "UNKNOWN"
VALIDATION_FAILED = "VALIDATION_FAILED"

RETRYABLE_AUTH_CODES = frozenset({SESSION_EXPIRED, NO_SESSION})


class ERPError(Exception):
    """Tagged ERP error.

    Attributes:
        kind: Error category
        code: ERP or internal error code
        retryable: Whether the operation may succeed if repeated
        status_code: HTTP status, 0 when no response was received
        context: Structured details for logs and audit entries
        field_errors: Field-level messages (validation errors only)
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.API,
        code: str = UNKNOWN,
        retryable: Optional[bool] = None,
        status_code: int = 0,
        context: Optional[Dict[str, Any]] = None,
        field_errors: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        if retryable is None:
            retryable = _default_retryable(kind, code)
        self.retryable = retryable
        self.status_code = status_code
        self.context = context or {}
        self.field_errors = field_errors or []

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.status_code:
            data["status_code"] = self.status_code
        if self.context:
            data["context"] = self.context
        if self.field_errors:
            data["field_errors"] = self.field_errors
        return data

    def __repr__(self) -> str:
        return f"ERPError(kind={self.kind.value}, code={self.code!r}, message={self.message!r})"

    # =========================================================================
    # Authentication
    # =========================================================================

    @classmethod
    def authentication(cls, message: str, code: str, **kwargs) -> "ERPError":
        return cls(message, kind=ErrorKind.AUTHENTICATION, code=code, **kwargs)

    @classmethod
    def invalid_credentials(cls) -> "ERPError":
        return cls.authentication(
            "Invalid credentials. Please check your username and password.",
            INVALID_CREDENTIALS,
            status_code=401,
        )

    @classmethod
    def session_expired(cls) -> "ERPError":
        return cls.authentication("Session has expired. Please re-authenticate.", SESSION_EXPIRED, status_code=401)

    @classmethod
    def no_session(cls) -> "ERPError":
        return cls.authentication("No active session. Please authenticate first.", NO_SESSION)

    @classmethod
    def forbidden(cls) -> "ERPError":
        return cls.authentication("Access forbidden", FORBIDDEN, status_code=403)

    @classmethod
    def company_not_found(cls, company_db: str) -> "ERPError":
        return cls.authentication(
            f'Company database "{company_db}" not found.',
            COMPANY_NOT_FOUND,
            context={"company_db": company_db},
        )

    @classmethod
    def license_error(cls) -> "ERPError":
        return cls.authentication("License error. Please check your ERP license.", LICENSE_ERROR)

    @classmethod
    def malformed_session(cls) -> "ERPError":
        return cls.authentication("Login succeeded but no session token was returned", MALFORMED_SESSION)

    # =========================================================================
    # Connection
    # =========================================================================

    @classmethod
    def connection(cls, message: str, code: str, **kwargs) -> "ERPError":
        return cls(message, kind=ErrorKind.CONNECTION, code=code, **kwargs)

    @classmethod
    def timeout(cls, url: str, timeout: float) -> "ERPError":
        return cls.connection(
            f"Connection timed out after {timeout:g} seconds",
            TIMEOUT,
            context={"url": url, "timeout": timeout},
        )

    @classmethod
    def ssl_error(cls, url: str, detail: str) -> "ERPError":
        return cls.connection(f"SSL error: {detail}", SSL_ERROR, context={"url": url})

    @classmethod
    def unreachable(cls, url: str, detail: str) -> "ERPError":
        return cls.connection(f"Unable to reach ERP server: {detail}", UNREACHABLE, context={"url": url})

    @classmethod
    def max_retries_exceeded(cls, attempts: int, last_error: Optional["ERPError"] = None) -> "ERPError":
        context: Dict[str, Any] = {"attempts": attempts}
        if last_error is not None:
            context["last_error"] = last_error.message
        return cls.connection("Maximum retry attempts exceeded", MAX_RETRIES_EXCEEDED, context=context)

    # =========================================================================
    # API
    # =========================================================================

    @classmethod
    def api(cls, message: str, code: str = UNKNOWN, status_code: int = 0, **kwargs) -> "ERPError":
        return cls(message, kind=ErrorKind.API, code=code, status_code=status_code, **kwargs)

    @classmethod
    def not_found(cls, url: str) -> "ERPError":
        return cls.api("Resource not found", NOT_FOUND, status_code=404, context={"url": url})

    @classmethod
    def http_status(cls, status_code: int) -> "ERPError":
        return cls.api(f"Unexpected response status: {status_code}", str(status_code), status_code=status_code)

    @classmethod
    def from_response(cls, body: Dict[str, Any], status_code: int = 0) -> "ERPError":
        """Build an API error from an ERP error body (either nesting convention)."""
        from connectors.service_layer.sl_parser import parse_error

        info = parse_error(body)
        return cls.api(info.message, str(info.code), status_code=status_code, context={"response": body})

    # =========================================================================
    # Validation
    # =========================================================================

    @classmethod
    def validation(cls, message: str, field_errors: Optional[List[str]] = None, **kwargs) -> "ERPError":
        return cls(
            message,
            kind=ErrorKind.VALIDATION,
            code=VALIDATION_FAILED,
            field_errors=field_errors,
            **kwargs,
        )

    @classmethod
    def order_invalid(cls, order_id: int, errors: List[str]) -> "ERPError":
        message = f"Order #{order_id} validation failed: " + ", ".join(errors)
        return cls.validation(message, field_errors=list(errors), context={"order_id": order_id})

    @classmethod
    def missing_field(cls, field: str) -> "ERPError":
        return cls.validation(f'Required field "{field}" is missing.', field_errors=[field])

    @classmethod
    def invalid_field(cls, field: str, reason: str) -> "ERPError":
        return cls.validation(f'Field "{field}" is invalid: {reason}', field_errors=[field])

    # Convenience predicates

    @property
    def is_not_found(self) -> bool:
        return self.kind == ErrorKind.API and self.code == NOT_FOUND


def _default_retryable(kind: ErrorKind, code: str) -> bool:
    if kind == ErrorKind.CONNECTION:
        return True
    if kind == ErrorKind.AUTHENTICATION:
        return code in RETRYABLE_AUTH_CODES
    return False
