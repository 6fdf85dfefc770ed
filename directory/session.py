"""Credential establishment for Microsoft Graph.

The tools run unattended, so the app registration configured through
``AZURE_TENANT_ID``/``AZURE_CLIENT_ID``/``AZURE_CLIENT_SECRET`` signs in with
the client-credentials flow.  Application permissions are granted on the app
registration itself; the per-task permission sets below are informational and
are appended to the error when a call is rejected with 401/403.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

import msal
import requests

from creds import require_graph_credentials
from exceptions import AuthError

logger = logging.getLogger("directory")

GRAPH_DEFAULT_SCOPE = ("https://graph.microsoft.com/.default",)

REQUIRED_PERMISSIONS: Dict[str, Tuple[str, ...]] = {
    "export": ("Device.Read.All",),
    "export_exclude_autopilot": (
        "Device.Read.All",
        "DeviceManagementServiceConfig.Read.All",
    ),
    "remove": ("Device.ReadWrite.All",),
    "recovery_keys": ("BitlockerKey.Read.All", "Device.Read.All"),
}


def _build_msal_client(
    tenant_id: str, client_id: str, client_secret: str
) -> msal.ConfidentialClientApplication:
    authority = f"https://login.microsoftonline.com/{tenant_id}"
    return msal.ConfidentialClientApplication(
        client_id=client_id,
        client_credential=client_secret,
        authority=authority,
    )


def acquire_token(
    *,
    tenant_id: Optional[str] = None,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    scopes: Sequence[str] = GRAPH_DEFAULT_SCOPE,
) -> str:
    """Return an application access token for Microsoft Graph.

    Missing credentials raise :class:`EnvironmentError`; a rejected sign-in
    raises :class:`AuthError`.  Both are precondition failures for the
    calling tool.
    """

    if not (tenant_id and client_id and client_secret):
        tenant_id, client_id, client_secret = require_graph_credentials()

    client = _build_msal_client(tenant_id, client_id, client_secret)
    try:
        result = client.acquire_token_for_client(scopes=list(scopes))
    except (requests.RequestException, ValueError) as exc:
        raise AuthError(f"Token request failed: {exc}") from exc

    if not result or "access_token" not in result:
        result = result or {}
        logger.error(
            "Token acquisition failed (error=%s, correlation_id=%s)",
            result.get("error"),
            result.get("correlation_id"),
        )
        description = result.get("error_description") or result.get("error") or "Unknown error"
        raise AuthError(f"Sign-in failed: {description}")
    return result["access_token"]


def open_graph_session(task: str, token: Optional[str] = None) -> requests.Session:
    """Return a ``requests.Session`` carrying a bearer token for ``task``."""

    permissions = REQUIRED_PERMISSIONS.get(task, ())
    if permissions:
        logger.debug("Task %s requires Graph permissions: %s", task, ", ".join(permissions))

    access_token = token or acquire_token()
    session = requests.Session()
    session.headers.update({
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    })
    return session


__all__ = [
    "GRAPH_DEFAULT_SCOPE",
    "REQUIRED_PERMISSIONS",
    "acquire_token",
    "open_graph_session",
]
