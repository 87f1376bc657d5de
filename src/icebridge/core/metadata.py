"""Discovery of the latest Iceberg metadata file for a table.

Iceberg writers name metadata files with a leading generation number
(``00003-<uuid>.metadata.json`` or ``v3.metadata.json``). The authoritative
snapshot is the one with the highest generation; the listing order returned
by the storage platform carries no meaning.
"""

from __future__ import annotations

import logging
import re
from typing import Protocol

from icebridge.core.config import normalize_table_path
from icebridge.core.errors import ListingError, NoMetadataFound
from icebridge.core.models import MetadataSnapshot
from icebridge.core.paths import join_url

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".metadata.json"
_GENERATION_RE = re.compile(r"^v?(\d+)(?:[-_.]|$)")


class DirectoryLister(Protocol):
    """Interface for listing a storage directory."""

    def list_directory(self, url: str) -> list[str]:
        """
        Return entry names directly under ``url``.

        Raises NoMetadataFound when the directory does not exist and
        ListingError when the response cannot be interpreted.
        """
        ...


def parse_generation(filename: str) -> int:
    """
    Return the leading generation number of a metadata file name.

    Raises:
        ValueError: If the name has no leading generation number.
    """
    name = filename.rsplit("/", 1)[-1]
    stem = name[: -len(METADATA_SUFFIX)] if name.endswith(METADATA_SUFFIX) else name
    match = _GENERATION_RE.match(stem)
    if not match:
        raise ValueError(f"No generation number in '{filename}'.")
    return int(match.group(1))


def metadata_files(entries: list[str]) -> list[tuple[int, str]]:
    """
    Return (generation, filename) for every metadata file in a listing.

    Non-metadata entries (manifests, snapshots, stats files) are ignored.

    Raises:
        ListingError: If a metadata file has no parseable generation.
    """
    files: list[tuple[int, str]] = []
    for entry in entries:
        if not isinstance(entry, str):
            raise ListingError(f"Unexpected listing entry: {entry!r}")
        name = entry.rstrip("/").rsplit("/", 1)[-1]
        if not name.endswith(METADATA_SUFFIX):
            continue
        try:
            files.append((parse_generation(name), name))
        except ValueError as exc:
            raise ListingError(str(exc)) from exc
    return files


def select_latest(entries: list[str]) -> tuple[int, str]:
    """
    Pick the authoritative metadata file from a listing.

    Generations are compared numerically; equal generations are broken by
    the lexicographically greatest file name.

    Raises:
        NoMetadataFound: If the listing contains no metadata files.
        ListingError: If a metadata file has no parseable generation.
    """
    files = metadata_files(entries)
    if not files:
        raise NoMetadataFound("No metadata files found.")
    return max(files)


def locate_latest_metadata(
    storage: DirectoryLister, base_url: str, table_path: str
) -> MetadataSnapshot:
    """
    Resolve the latest metadata snapshot of the table at ``table_path``.

    Args:
        storage: Adapter used to list the table's metadata directory.
        base_url: Mount base URL the table path is relative to.
        table_path: Table root relative to the mount (not `metadata/`).

    Returns:
        A MetadataSnapshot whose ``file_path`` is relative to ``base_url``.
    """
    root = normalize_table_path(table_path)
    metadata_dir = join_url(base_url, root, "metadata")
    logger.debug("Listing %s", metadata_dir)

    entries = storage.list_directory(metadata_dir)
    try:
        generation, name = select_latest(entries)
    except NoMetadataFound as exc:
        raise NoMetadataFound(f"No metadata files under '{metadata_dir}'.") from exc

    snapshot = MetadataSnapshot(
        table_path=root,
        generation_number=generation,
        file_path=f"{root}/metadata/{name}",
    )
    logger.info(
        "Latest metadata for %s: generation %d (%s)",
        root,
        generation,
        snapshot.file_path,
    )
    return snapshot
