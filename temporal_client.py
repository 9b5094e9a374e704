"""Temporal client factory.

Connects to a local Temporal server by default, or to Temporal Cloud when an
API key or client certificate is configured.
"""

import os
from pathlib import Path
from typing import Optional, Union

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client, TLSConfig

DEFAULT_ENDPOINT = "localhost:7233"


def build_tls_config(cert_path: Optional[str], key_path: Optional[str]) -> Optional[TLSConfig]:
    """Build an mTLS config from PEM files.

    Raises:
        ValueError: If only one of certificate and key is given
    """
    if not cert_path and not key_path:
        return None
    if not (cert_path and key_path):
        raise ValueError("TEMPORAL_CERT_PATH and TEMPORAL_KEY_PATH must be set together")
    return TLSConfig(
        client_cert=Path(cert_path).read_bytes(),
        client_private_key=Path(key_path).read_bytes(),
    )


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Server address (default "localhost:7233")
    - TEMPORAL_NAMESPACE: Namespace (default "default")
    - TEMPORAL_API_KEY: Temporal Cloud API key (enables TLS)
    - TEMPORAL_CERT_PATH / TEMPORAL_KEY_PATH: Client certificate for mTLS

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If the certificate settings are incomplete
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT", DEFAULT_ENDPOINT)
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")

    tls: Union[bool, TLSConfig] = build_tls_config(
        os.getenv("TEMPORAL_CERT_PATH"),
        os.getenv("TEMPORAL_KEY_PATH"),
    ) or bool(api_key)

    return await Client.connect(
        target_host=endpoint,
        namespace=namespace,
        tls=tls,
        api_key=api_key,
    )
