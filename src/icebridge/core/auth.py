"""Authentication helpers for the warehouse and the storage platform.

This module centralizes creation of the Snowflake connection and the HTTP
session used for OneLake / Fabric, and applies small normalization rules
(such as sanitizing the account identifier) to avoid subtle connector and
API issues.
"""

from __future__ import annotations

import re

import requests
import snowflake.connector
from requests.adapters import HTTPAdapter
from snowflake.connector import SnowflakeConnection
from snowflake.connector.errors import DatabaseError
from urllib3.util.retry import Retry

from icebridge.core.config import StorageSettings, WarehouseSettings
from icebridge.core.errors import AuthError


def _format_auth_error(message: str, connection_name: str | None) -> str:
    """Return a user-friendly auth error message."""
    if re.search(r"(incorrect username or password|authentication token has expired)", message, re.I):
        hint = "Check the credentials"
        if connection_name:
            hint = f"{hint} of connection '{connection_name}' in connections.toml"
        return f"Snowflake authentication failed. {hint}.\n  {message}"
    return f"Snowflake connection failed: {message}"


def _sanitize_account(account: str | None) -> str | None:
    """
    Normalize a Snowflake account identifier.

    - Removes a scheme (``https://``)
    - Removes the ``.snowflakecomputing.com`` host suffix and trailing slashes

    People often paste the account URL from the browser; the connector wants
    only the identifier.
    """
    if not account:
        return account
    account = account.strip()
    account = re.sub(r"^[a-z]+://", "", account, flags=re.I)
    account = account.split("/", 1)[0]
    return re.sub(r"\.snowflakecomputing\.com$", "", account, flags=re.I)


def get_connection(settings: WarehouseSettings) -> SnowflakeConnection:
    """
    Create and return a Snowflake connection.

    If ``connection_name`` is set it is resolved from the connector's
    ``connections.toml``; explicit settings override its values.
    """
    kwargs: dict[str, str] = {}
    if settings.connection_name:
        kwargs["connection_name"] = settings.connection_name
    if settings.account:
        kwargs["account"] = _sanitize_account(settings.account) or ""
    for key in ("user", "password", "authenticator", "role", "warehouse", "database", "schema"):
        value = getattr(settings, key)
        if value:
            kwargs[key] = value

    try:
        return snowflake.connector.connect(**kwargs)
    except DatabaseError as exc:
        raise AuthError(_format_auth_error(str(exc), settings.connection_name)) from exc


def get_storage_session(
    settings: StorageSettings, retries: int = 3, backoff: float = 1.0
) -> requests.Session:
    """Return a requests session with bearer auth and retries for OneLake / Fabric."""
    if not settings.token:
        raise AuthError(
            "No storage token configured. Set `storage.token_env` or "
            "ICEBRIDGE_FABRIC_TOKEN."
        )
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=backoff,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=["HEAD", "GET", "PUT", "DELETE", "OPTIONS"],
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"Authorization": f"Bearer {settings.token}"})
    return session
