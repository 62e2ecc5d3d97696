"""Reconcile managed directories with the titles the host already owns."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Sequence

from ..errors import IncompatibleHostError
from ..models import MEDIA_KINDS, LocalRecord, ManagedEntry, MetadataRecord
from ..ports import CatalogLookup
from ..utils import path_key
from .duplicates import DuplicateResolver
from .library import ManagedLibrary
from .matcher import CatalogMatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncResult:
    """Counts reported by one reconciliation cycle."""

    success: bool
    message: str
    matched: int = 0
    unmatched: int = 0
    ignored: int = 0
    already_ignored: int = 0
    orphaned: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "ignored": self.ignored,
            "alreadyIgnored": self.already_ignored,
            "orphaned": self.orphaned,
        }


class SyncService:
    """Mark managed titles the user already owns and add new candidates."""

    def __init__(
        self,
        catalog: CatalogLookup,
        library: ManagedLibrary,
        matcher: CatalogMatcher,
        resolver: DuplicateResolver,
    ) -> None:
        self._catalog = catalog
        self._library = library
        self._matcher = matcher
        self._resolver = resolver

    async def sync_library(self) -> SyncResult:
        if not await asyncio.to_thread(self._library.check_read_write):
            message = "Library directory is missing or not writable"
            logger.warning("%s: %s", message, self._library.root)
            return SyncResult(success=False, message=message)

        placed = await self._library.list_placed()
        directories: dict[str, list[str]] = defaultdict(list)
        for directory, record in placed:
            directories[record.item_hash].append(directory)
        records = [record for _, record in placed]

        matches, unmatched = await self._matcher.match_metadata(records)

        ignored = already_ignored = 0
        seen: set[str] = set()
        for pair in matches:
            for directory in directories.get(pair.metadata.item_hash, []):
                key = path_key(directory)
                if key in seen:
                    continue
                seen.add(key)
                try:
                    created = await asyncio.to_thread(
                        self._library.write_ignore_marker, directory, pair.local
                    )
                except OSError as exc:
                    logger.warning("Unable to write ignore marker in %s: %s", directory, exc)
                    continue
                if created:
                    logger.debug("Ignoring %s, already owned as %s", directory, pair.local.name)
                    ignored += 1
                else:
                    already_ignored += 1

        if ignored:
            await self._library.refresh(remove=True)
        orphaned = await self._count_orphaned()

        result = SyncResult(
            success=True,
            message="Library sync completed successfully",
            matched=len(matches),
            unmatched=len(unmatched),
            ignored=ignored,
            already_ignored=already_ignored,
            orphaned=orphaned,
        )
        logger.info(
            "Library sync: %s matched, %s unmatched, %s newly ignored, %s orphaned",
            result.matched,
            result.unmatched,
            result.ignored,
            result.orphaned,
        )
        return result

    async def add_candidates(self, records: Sequence[MetadataRecord]) -> list[ManagedEntry]:
        """Write metadata for every candidate not yet present in the managed root.

        Records bound for a network folder are placed through the duplicate
        resolver. All others go to their media kind folder unless the same
        title already has a directory anywhere under the root.
        """

        networked = [record for record in records if self._library.uses_network_folder(record)]
        placements = await self._resolver.filter_new(networked)
        placements.extend(await self._kind_folder_placements(records))

        written: list[ManagedEntry] = []
        for entry in placements:
            try:
                await asyncio.to_thread(
                    self._library.write_metadata, entry.directory, entry.record
                )
            except OSError as exc:
                logger.warning(
                    "Unable to write metadata for %s to %s: %s",
                    entry.record.title,
                    entry.directory,
                    exc,
                )
                continue
            written.append(entry)

        logger.info("Added %s of %s candidate titles", len(written), len(records))
        if written:
            await self._library.refresh(create=True)
        return written

    async def _kind_folder_placements(
        self, records: Sequence[MetadataRecord]
    ) -> list[ManagedEntry]:
        pending = [record for record in records if not self._library.uses_network_folder(record)]
        if not pending:
            return []

        known = {record.item_hash for _, record in await self._library.list_placed()}
        placements: list[ManagedEntry] = []
        for record in pending:
            if record.item_hash in known:
                continue
            known.add(record.item_hash)
            placements.append(
                ManagedEntry("", str(self._library.item_directory(record)), record)
            )
        return placements

    async def _count_orphaned(self) -> int:
        try:
            managed = await self._managed_local_items()
        except IncompatibleHostError as exc:
            logger.debug("Incompatible media host, skipping orphan check: %s", exc)
            return 0
        except Exception:
            logger.exception("Error listing managed items for the orphan check")
            return 0
        _, orphaned = await self._matcher.match_local(managed)
        for item in orphaned:
            logger.debug("Managed item %s (%s) has no metadata behind it", item.name, item.path)
        return len(orphaned)

    async def _managed_local_items(self) -> list[LocalRecord]:
        items: list[LocalRecord] = []
        for kind in MEDIA_KINDS:
            items.extend(
                item
                for item in await self._catalog.list_items(kind)
                if item.path and self._library.contains(item.path)
            )
        return items
