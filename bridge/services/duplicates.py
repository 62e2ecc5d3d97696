"""Decide which fetched metadata records still need a managed directory."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ..models import ManagedEntry, MetadataRecord
from ..utils import normalize_path, path_key
from .library import ManagedLibrary

logger = logging.getLogger(__name__)


class DuplicateResolver:
    """Filter candidate records down to titles no managed library holds yet."""

    def __init__(self, library: ManagedLibrary) -> None:
        self._library = library

    async def filter_new(self, candidates: Sequence[MetadataRecord]) -> list[ManagedEntry]:
        """Return ``(library, directory, record)`` placements for new titles.

        Candidates without a network tag are ignored. Errors resolving a single
        candidate drop that candidate; any other error yields an empty list.
        """

        if not candidates:
            return []
        try:
            return await self._filter_new(candidates)
        except Exception:
            logger.exception("Error mapping items to libraries, returning empty list")
            return []

    async def _filter_new(self, candidates: Sequence[MetadataRecord]) -> list[ManagedEntry]:
        libraries = await self._library.managed_libraries()
        if not libraries:
            logger.debug("No managed libraries found, returning empty list")
            return []

        location_pairs = [
            (library_name, path_key(location))
            for library_name, locations in libraries.items()
            for location in sorted(locations)
        ]

        resolved: list[tuple[MetadataRecord, str, str]] = []
        for record in candidates:
            if record is None or not record.network_tag:
                continue
            try:
                folder = normalize_path(self._library.target_folder(record))
                directory = normalize_path(self._library.item_directory(record))
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("Error resolving target folder for %s: %s", record.title, exc)
                continue
            resolved.append((record, folder, directory))

        placed: list[ManagedEntry] = []
        placed_keys: set[tuple[str, str, str]] = set()
        for record, folder, directory in resolved:
            folder_key = path_key(folder)
            for library_name, location_key in location_pairs:
                if location_key != folder_key:
                    continue
                key = (library_name, path_key(directory), record.item_hash)
                if key in placed_keys:
                    continue
                placed_keys.add(key)
                placed.append(ManagedEntry(library_name, directory, record))

        existing = await self._library.scan()
        existing_titles = {
            (entry.library.casefold(), entry.record.item_hash) for entry in existing
        }
        existing_dirs = {
            (path_key(entry.directory), entry.record.item_hash) for entry in existing
        }

        results: list[ManagedEntry] = []
        kept_titles: set[tuple[str, str]] = set()
        dropped = 0
        for entry in placed:
            title_key = (entry.library.casefold(), entry.record.item_hash)
            if title_key in existing_titles or title_key in kept_titles:
                dropped += 1
                continue
            kept_titles.add(title_key)
            results.append(entry)

        placed_dirs = {
            (path_key(entry.directory), entry.record.item_hash) for entry in placed
        }
        for record, _, directory in resolved:
            dir_key = (path_key(directory), record.item_hash)
            if dir_key in placed_dirs or dir_key in existing_dirs:
                continue
            if not self._library.contains(directory):
                continue
            on_disk = self._library.read_record(directory)
            if on_disk is not None and on_disk.item_hash == record.item_hash:
                continue
            placed_dirs.add(dir_key)
            results.append(ManagedEntry("", directory, record))
            logger.debug(
                "%s resolves under the managed root but no library; using empty library name",
                record.title,
            )

        logger.debug(
            "Mapped %s candidates into %s placements after filtering %s duplicates",
            len(candidates),
            len(results),
            dropped,
        )
        return results
