from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import requests

from creds import GRAPH_API_ENDPOINT, get_graph_timeout
from directory.session import REQUIRED_PERMISSIONS, open_graph_session
from exceptions import DirectoryRequestError

logger = logging.getLogger("directory")

DEVICE_PROJECTION = (
    "id",
    "deviceId",
    "displayName",
    "accountEnabled",
    "operatingSystem",
    "operatingSystemVersion",
    "trustType",
    "approximateLastSignInDateTime",
)

# Graph rejects BitLocker key reads that do not identify the calling client.
BITLOCKER_HEADERS = {
    "ocp-client-name": "entra-device-lifecycle",
    "ocp-client-version": "1.0",
}


def _quote_filter_value(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _path_segment(value: str) -> str:
    """Escape an identifier so it stays a single segment of the request path."""

    text = str(value).strip()
    if text in {"", ".", ".."}:
        raise DirectoryRequestError(f"Invalid directory identifier: {value!r}")
    return quote(text, safe="")


def _describe_error(response: requests.Response) -> str:
    detail = ""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code") or ""
            message = error.get("message") or ""
            detail = f"{code}: {message}" if code else message
    if not detail:
        detail = (response.text or "").strip()[:200] or response.reason or "no detail"
    return f"HTTP {response.status_code} {detail}"


class GraphDirectoryClient:
    """Thin Microsoft Graph wrapper exposing the device operations the tools need.

    Every list operation follows ``@odata.nextLink`` until the service stops
    returning one, so callers always receive the complete result set.
    """

    def __init__(
        self,
        session: requests.Session,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        permissions: Sequence[str] = (),
    ) -> None:
        self._session = session
        self._base_url = (base_url or GRAPH_API_ENDPOINT).rstrip("/")
        self._timeout = timeout if timeout is not None else get_graph_timeout()
        self._permissions = tuple(permissions)

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise DirectoryRequestError(f"{method} {url} failed: {exc}") from exc

        if response.status_code >= 400:
            message = _describe_error(response)
            if response.status_code in {401, 403} and self._permissions:
                message = f"{message} (requires {', '.join(self._permissions)})"
            raise DirectoryRequestError(message, status_code=response.status_code)
        return response

    def _get_json(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = self._request("GET", url, **kwargs)
        try:
            payload = response.json()
        except ValueError as exc:
            raise DirectoryRequestError(
                f"GET {url} returned a non-JSON body", status_code=response.status_code
            ) from exc
        if not isinstance(payload, dict):
            raise DirectoryRequestError(
                f"GET {url} returned an unexpected payload", status_code=response.status_code
            )
        return payload

    def _paginate(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        url: Optional[str] = self._url(path)
        query: Optional[Mapping[str, str]] = params
        items: List[Dict[str, Any]] = []
        pages = 0
        while url:
            payload = self._get_json(url, params=query, headers=headers)
            items.extend(item for item in payload.get("value", []) if isinstance(item, dict))
            pages += 1
            url = payload.get("@odata.nextLink")
            # The next link already carries the original query string.
            query = None
        logger.debug("Fetched %s items from %s across %s page(s)", len(items), path, pages)
        return items

    # ------------------------------------------------------------------
    # Directory operations
    # ------------------------------------------------------------------
    def list_devices(self, projection: Sequence[str] = DEVICE_PROJECTION) -> List[Dict[str, Any]]:
        return self._paginate("devices", params={"$select": ",".join(projection)})

    def list_provisioned_identities(self) -> List[Dict[str, Any]]:
        return self._paginate("deviceManagement/windowsAutopilotDeviceIdentities")

    def update_device(self, object_id: str, changes: Mapping[str, Any]) -> None:
        self._request("PATCH", self._url(f"devices/{_path_segment(object_id)}"), json=dict(changes))

    def disable_device(self, object_id: str) -> None:
        self.update_device(object_id, {"accountEnabled": False})

    def delete_device(self, object_id: str) -> None:
        self._request("DELETE", self._url(f"devices/{_path_segment(object_id)}"))

    def list_recovery_keys(self, device_id: str) -> List[Dict[str, Any]]:
        return self._paginate(
            "informationProtection/bitlocker/recoveryKeys",
            params={"$filter": f"deviceId eq {_quote_filter_value(device_id)}"},
            headers=BITLOCKER_HEADERS,
        )

    def get_recovery_key(self, key_id: str) -> Dict[str, Any]:
        return self._get_json(
            self._url(f"informationProtection/bitlocker/recoveryKeys/{_path_segment(key_id)}"),
            params={"$select": "key"},
            headers=BITLOCKER_HEADERS,
        )


def connect(task: str) -> GraphDirectoryClient:
    """Sign in and return a client scoped to ``task`` (see ``REQUIRED_PERMISSIONS``)."""

    session = open_graph_session(task)
    return GraphDirectoryClient(session, permissions=REQUIRED_PERMISSIONS.get(task, ()))


__all__ = [
    "BITLOCKER_HEADERS",
    "DEVICE_PROJECTION",
    "GraphDirectoryClient",
    "connect",
]
