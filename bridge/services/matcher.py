"""Pair metadata records with the items the media host already holds."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from ..errors import IncompatibleHostError
from ..models import MEDIA_KINDS, LocalRecord, MatchPair, MetadataRecord
from ..ports import CatalogLookup, MetadataProvider
from ..utils import is_path_under

logger = logging.getLogger(__name__)

FolderResolver = Callable[[MetadataRecord], Path]


class CatalogMatcher:
    """Match managed metadata against local catalog items.

    :meth:`match_metadata` starts from metadata records and reports the ones
    nothing matched. :meth:`match_local` starts from local items, reads the
    metadata itself, and reports local items that no longer have metadata
    behind them.
    """

    def __init__(
        self,
        catalog: CatalogLookup,
        metadata: MetadataProvider,
        *,
        managed_root: Path | None = None,
        folder_resolver: FolderResolver | None = None,
        duplicates_by_folder: bool = False,
    ) -> None:
        self._catalog = catalog
        self._metadata = metadata
        self._managed_root = managed_root
        self._folder_resolver = folder_resolver
        self._duplicates_by_folder = duplicates_by_folder

    async def match_metadata(
        self,
        records: Sequence[MetadataRecord],
        *,
        local_items: Sequence[LocalRecord] | None = None,
    ) -> tuple[list[MatchPair], list[MetadataRecord]]:
        """Return matches and the metadata records left without a local item.

        When ``local_items`` is omitted every movie and show outside the managed
        root is fetched from the catalog.
        """

        matches: list[MatchPair] = []
        try:
            if local_items is None:
                local_items = await self.load_user_owned_items()
            matches = self.find_matches(local_items, records)
        except IncompatibleHostError as exc:
            logger.debug("Incompatible media host, skipping library scan: %s", exc)
        except Exception:
            logger.exception("Error during library scan")

        unmatched = self._unmatched_metadata(matches, records)
        logger.debug(
            "Library scan completed: %s matches, %s unmatched metadata records",
            len(matches),
            len(unmatched),
        )
        return matches, unmatched

    async def match_local(
        self, local_items: Sequence[LocalRecord]
    ) -> tuple[list[MatchPair], list[LocalRecord]]:
        """Return matches and the local items no metadata record accounts for."""

        records = await self._metadata.list_records()
        matches = self.find_matches(local_items, records)
        matched_ids = {pair.local.id for pair in matches}
        unmatched = [item for item in local_items if item.id not in matched_ids]
        return matches, unmatched

    async def load_user_owned_items(self) -> list[LocalRecord]:
        """Fetch movies and shows that do not live under the managed root."""

        items: list[LocalRecord] = []
        for kind in MEDIA_KINDS:
            items.extend(await self._catalog.list_items(kind))
        if self._managed_root is None:
            return items
        return [
            item
            for item in items
            if not (item.path and is_path_under(item.path, self._managed_root))
        ]

    @staticmethod
    def find_matches(
        local_items: Sequence[LocalRecord],
        records: Sequence[MetadataRecord],
    ) -> list[MatchPair]:
        """Pair every local item with every metadata record of the same title.

        All matches are kept, not just the first, because the same title can
        legitimately exist in several managed folders.
        """

        matches: list[MatchPair] = []
        for kind in MEDIA_KINDS:
            kind_records = [record for record in records if record.kind == kind]
            if not kind_records:
                continue
            for local in (item for item in local_items if item.kind == kind):
                for record in kind_records:
                    if record.matches(local):
                        logger.debug(
                            "Found match: '%s' (%s) matches '%s' (%s)",
                            local.name,
                            local.id,
                            record.title,
                            record.id,
                        )
                        matches.append(MatchPair(record, local))
        return matches

    def _unmatched_metadata(
        self,
        matches: Sequence[MatchPair],
        records: Sequence[MetadataRecord],
    ) -> list[MetadataRecord]:
        if self._duplicates_by_folder and self._folder_resolver is not None:
            resolve = self._folder_resolver
            matched_folders = {
                pair.metadata.folder_hash(resolve(pair.metadata)) for pair in matches
            }
            return [
                record
                for record in records
                if record.folder_hash(resolve(record)) not in matched_folders
            ]
        matched_ids = {(pair.metadata.kind, pair.metadata.id) for pair in matches}
        return [record for record in records if (record.kind, record.id) not in matched_ids]
