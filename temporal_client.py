"""Temporal client factory.

Connects to Temporal Cloud when an API key or client certificate is
configured, otherwise to a local development server.
"""

import os
from pathlib import Path
from typing import Union

# Load .env file if it exists
from dotenv import load_dotenv
env_path = Path(__file__).resolve().parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

from temporalio.client import Client
from temporalio.service import TLSConfig


DEFAULT_ENDPOINT = "localhost:7233"


def _tls_config(cert_path: str, key_path: str) -> TLSConfig:
    return TLSConfig(
        client_cert=Path(cert_path).read_bytes(),
        client_private_key=Path(key_path).read_bytes(),
    )


async def get_temporal_client() -> Client:
    """Create and return a Temporal client.

    Reads configuration from environment variables:
    - TEMPORAL_ENDPOINT: Server endpoint (default "localhost:7233")
    - TEMPORAL_NAMESPACE: Namespace (default "default")
    - TEMPORAL_API_KEY: Temporal Cloud API key; enables TLS when set
    - TEMPORAL_CERT_PATH / TEMPORAL_KEY_PATH: Client certificate and key for mTLS

    Returns:
        Connected Temporal client

    Raises:
        ValueError: If a certificate is configured without its key
    """
    endpoint = os.getenv("TEMPORAL_ENDPOINT", DEFAULT_ENDPOINT)
    namespace = os.getenv("TEMPORAL_NAMESPACE", "default")
    api_key = os.getenv("TEMPORAL_API_KEY")
    cert_path = os.getenv("TEMPORAL_CERT_PATH")
    key_path = os.getenv("TEMPORAL_KEY_PATH")

    if not api_key and not cert_path:
        return await Client.connect(endpoint, namespace=namespace)

    tls: Union[bool, TLSConfig] = True
    if cert_path:
        if not key_path:
            raise ValueError(
                "TEMPORAL_KEY_PATH environment variable not set. "
                "Set it to the private key matching TEMPORAL_CERT_PATH"
            )
        tls = _tls_config(cert_path, key_path)

    return await Client.connect(
        endpoint,
        namespace=namespace,
        tls=tls,
        api_key=api_key,
    )
