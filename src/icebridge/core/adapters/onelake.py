from __future__ import annotations

import logging
import re
from typing import Any

import requests

from icebridge.core.errors import AuthError, ListingError, NoMetadataFound
from icebridge.core.config import StorageSettings
from icebridge.core.consent import ROLE_ORDER
from icebridge.core.models import AccessKind, PrincipalAccess, ShortcutTarget
from icebridge.core.paths import parse_storage_url

logger = logging.getLogger(__name__)

_GUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I
)


def _is_guid(value: str) -> bool:
    return bool(_GUID_RE.match(value))


class OneLakeStorageAdapter:
    """Adapter around the OneLake DFS endpoint and the Fabric REST API."""

    def __init__(self, session: requests.Session, settings: StorageSettings) -> None:
        self.session = session
        self.settings = settings

    def _get_json(self, url: str, **params: Any) -> dict[str, Any]:
        resp = self.session.get(url, params=params or None, timeout=self.settings.timeout)
        resp.raise_for_status()
        return resp.json()

    def _paged(self, url: str) -> list[dict[str, Any]]:
        """Collect `value` items across Fabric continuation pages."""
        items: list[dict[str, Any]] = []
        params: dict[str, Any] = {}
        while True:
            payload = self._get_json(url, **params)
            items.extend(payload.get("value", []))
            token = payload.get("continuationToken")
            if not token:
                return items
            params = {"continuationToken": token}

    def list_directory(self, url: str) -> list[str]:
        """
        Return entry names directly under a OneLake directory.

        Missing directories raise NoMetadataFound; any other failure to list
        or to parse the response raises ListingError.
        """
        loc = parse_storage_url(url)
        endpoint = f"{self.settings.dfs_endpoint}/{loc.workspace}"
        params: dict[str, Any] = {
            "resource": "filesystem",
            "recursive": "false",
            "directory": loc.path,
        }
        names: list[str] = []

        while True:
            try:
                resp = self.session.get(endpoint, params=params, timeout=self.settings.timeout)
            except requests.RequestException as exc:
                raise ListingError(f"Listing '{url}' failed: {exc}") from exc
            if resp.status_code == 404:
                raise NoMetadataFound(f"Directory '{url}' does not exist.")
            if resp.status_code >= 400:
                raise ListingError(
                    f"Listing '{url}' failed ({resp.status_code}): {resp.text}"
                )
            try:
                paths = resp.json()["paths"]
            except (ValueError, KeyError, TypeError) as exc:
                raise ListingError(f"Unexpected listing response for '{url}'.") from exc
            if not isinstance(paths, list):
                raise ListingError(f"Unexpected listing response for '{url}'.")

            for p in paths:
                name = p.get("name") if isinstance(p, dict) else None
                if not name:
                    raise ListingError(f"Listing entry without a name under '{url}'.")
                names.append(str(name).rstrip("/").rsplit("/", 1)[-1])

            continuation = resp.headers.get("x-ms-continuation")
            if not continuation:
                break
            params["continuation"] = continuation

        logger.debug("Listed %d entries under %s", len(names), url)
        return names

    def principal_access(self, workspace: str, display_name: str) -> PrincipalAccess:
        """Look up a principal's role on a Fabric workspace."""
        workspace_id = self._resolve_workspace_id(workspace)
        url = f"{self.settings.api_endpoint}/workspaces/{workspace_id}/roleAssignments"
        want = display_name.lower()

        roles: list[str | None] = []
        for assignment in self._paged(url):
            principal = assignment.get("principal") or {}
            if str(principal.get("displayName", "")).lower() == want:
                roles.append(assignment.get("role"))

        if not roles:
            return PrincipalAccess(kind=AccessKind.NOT_FOUND)
        known = [r for r in roles if r in ROLE_ORDER]
        if not known:
            return PrincipalAccess(kind=AccessKind.FOUND_NO_ROLE)
        strongest = max(known, key=ROLE_ORDER.index)
        return PrincipalAccess(kind=AccessKind.FOUND_WITH_ROLE, role=strongest)

    def _service_principal_id(self, display_name: str) -> str:
        """Resolve a service principal's object id through Microsoft Graph."""
        if not self.settings.graph_token:
            raise AuthError(
                "Granting access needs a Microsoft Graph token. Set "
                "`storage.graph_token_env` or ICEBRIDGE_GRAPH_TOKEN."
            )
        escaped = display_name.replace("'", "''")
        resp = requests.get(
            f"{self.settings.graph_endpoint}/servicePrincipals",
            params={"$filter": f"displayName eq '{escaped}'", "$select": "id,displayName"},
            headers={"Authorization": f"Bearer {self.settings.graph_token}"},
            timeout=self.settings.timeout,
        )
        resp.raise_for_status()
        matches = resp.json().get("value", [])
        if len(matches) != 1:
            raise ValueError(
                f"Expected one service principal named '{display_name}', found {len(matches)}."
            )
        return matches[0]["id"]

    def grant_access(self, workspace: str, display_name: str, role: str) -> None:
        """Assign a workspace role to a service principal."""
        workspace_id = self._resolve_workspace_id(workspace)
        principal_id = self._service_principal_id(display_name)
        resp = self.session.post(
            f"{self.settings.api_endpoint}/workspaces/{workspace_id}/roleAssignments",
            json={"principal": {"id": principal_id, "type": "ServicePrincipal"}, "role": role},
            timeout=self.settings.timeout,
        )
        # 409: the principal already has a role on the workspace
        if resp.status_code != 409:
            resp.raise_for_status()

    def _resolve_workspace_id(self, workspace: str) -> str:
        """Return a workspace id for a workspace id or display name."""
        if _is_guid(workspace):
            return workspace
        for ws in self._paged(f"{self.settings.api_endpoint}/workspaces"):
            if ws.get("displayName") == workspace:
                return ws["id"]
        raise ValueError(f"Workspace '{workspace}' not found.")

    def _resolve_item_id(self, workspace_id: str, item: str) -> str:
        """Return an item id for an item id or a ``<name>.<Type>`` OneLake segment."""
        if _is_guid(item):
            return item
        name, _, item_type = item.rpartition(".")
        if not name:
            name, item_type = item, ""
        url = f"{self.settings.api_endpoint}/workspaces/{workspace_id}/items"
        for it in self._paged(url):
            if it.get("displayName") != name:
                continue
            if item_type and str(it.get("type", "")).lower() != item_type.lower():
                continue
            return it["id"]
        raise ValueError(f"Item '{item}' not found in workspace {workspace_id}.")

    def create_shortcut(
        self,
        target: ShortcutTarget,
        *,
        source_workspace: str,
        source_item: str,
        source_path: str,
    ) -> str:
        """Create (or overwrite) a OneLake shortcut under the target's Tables/."""
        workspace_id = self._resolve_workspace_id(source_workspace)
        item_id = self._resolve_item_id(workspace_id, source_item)
        resp = self.session.post(
            f"{self.settings.api_endpoint}/workspaces/{target.workspace_id}"
            f"/items/{target.item_id}/shortcuts",
            params={"shortcutConflictPolicy": "CreateOrOverwrite"},
            json={
                "path": "Tables",
                "name": target.name,
                "target": {
                    "oneLake": {
                        "workspaceId": workspace_id,
                        "itemId": item_id,
                        "path": source_path,
                    }
                },
            },
            timeout=self.settings.timeout,
        )
        resp.raise_for_status()
        body = resp.json() if resp.content else {}
        return f"{body.get('path', 'Tables')}/{body.get('name', target.name)}"

