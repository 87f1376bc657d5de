"""Storage URL helpers for OneLake locations."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse


@dataclass(frozen=True)
class OneLakeLocation:
    """A OneLake path split into host, workspace and item-relative path."""

    scheme: str
    host: str
    workspace: str
    path: str


def parse_storage_url(url: str) -> OneLakeLocation:
    """
    Split a storage URL such as
    ``azure://onelake.dfs.fabric.microsoft.com/ws/lh.Lakehouse/Files/x``
    into its host, workspace and the remaining path.

    ABFS URLs carry the workspace as user info
    (``abfss://ws@onelake.dfs.fabric.microsoft.com/lh.Lakehouse/Files/x``)
    and resolve to the same location.
    """
    if not url:
        raise ValueError("url is required")
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Storage URL missing scheme or host: {url}")
    if parsed.username:
        # abfss://<workspace>@onelake.dfs.fabric.microsoft.com/<item>/...
        return OneLakeLocation(
            scheme=parsed.scheme,
            host=parsed.hostname or "",
            workspace=parsed.username,
            path=parsed.path.strip("/"),
        )
    parts = parsed.path.strip("/").split("/", 1)
    if not parts[0]:
        raise ValueError(f"Storage URL missing workspace: {url}")
    return OneLakeLocation(
        scheme=parsed.scheme,
        host=parsed.netloc,
        workspace=parts[0],
        path=parts[1] if len(parts) > 1 else "",
    )


def join_url(base: str, *parts: str) -> str:
    """Join path segments onto a base URL with single slashes."""
    out = base.rstrip("/")
    for p in parts:
        p = p.strip("/")
        if p:
            out = f"{out}/{p}"
    return out


def relative_to_base(base_url: str, location: str) -> str:
    """
    Return ``location`` relative to ``base_url``.

    Scheme differences (``azure://`` vs ``abfss://`` vs ``https://``) are
    ignored; host and path must match.
    """
    base = parse_storage_url(base_url)
    loc = parse_storage_url(location)
    if base.host.lower() != loc.host.lower() or base.workspace != loc.workspace:
        raise ValueError(f"'{location}' is not under '{base_url}'.")
    base_path = base.path.strip("/")
    loc_path = loc.path.strip("/")
    if not base_path:
        return loc_path
    if loc_path == base_path:
        return ""
    if not loc_path.startswith(base_path + "/"):
        raise ValueError(f"'{location}' is not under '{base_url}'.")
    return loc_path[len(base_path) + 1 :]


def table_root_from_metadata_location(metadata_location: str) -> str:
    """
    Return the table root for a metadata file location.

    ``.../users.abc/metadata/00001-x.metadata.json`` -> ``.../users.abc``
    """
    trimmed = metadata_location.rstrip("/")
    head, sep, _ = trimmed.rpartition("/metadata/")
    if not sep or not head:
        raise ValueError(
            f"Metadata location '{metadata_location}' is not inside a metadata/ directory."
        )
    return head
