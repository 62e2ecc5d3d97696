"""Push computed play counts into the media host's per-user state."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timezone

from ..models import (
    DirectoryEntry,
    DirectoryRank,
    ItemFound,
    ItemNotFound,
    KindMismatch,
    LocalRecord,
    LookupResult,
    RankingResult,
    SkippedItem,
    SortedItem,
    StateUpdate,
    UserAccount,
    UserOutcome,
)
from ..ports import CatalogLookup, UserStateStore
from .library import ManagedLibrary

logger = logging.getLogger(__name__)


class UpdateApplier:
    """Apply one user's ranking to the host and classify every directory.

    Play counts are written in a first batch whose results decide success or
    failure. The played flag is written afterwards in a second batch that is
    only logged.
    """

    def __init__(
        self,
        catalog: CatalogLookup,
        state_store: UserStateStore,
        library: ManagedLibrary,
        *,
        mark_played: bool = False,
    ) -> None:
        self._catalog = catalog
        self._state_store = state_store
        self._library = library
        self._mark_played = mark_played

    async def resolve_item(self, entry: DirectoryEntry) -> LookupResult:
        item = await self._catalog.find_item_by_directory(entry.directory)
        if item is None:
            return ItemNotFound(entry.directory)
        if item.kind != entry.kind:
            return KindMismatch(entry.directory, expected=entry.kind, actual=item.kind)
        return ItemFound(item)

    async def apply(self, user: UserAccount, ranking: RankingResult) -> UserOutcome:
        outcome = UserOutcome()

        ignored: list[DirectoryEntry] = []
        active: list[tuple[DirectoryEntry, DirectoryRank]] = []
        for entry, rank in ranking.ranks.items():
            if self._library.is_ignored(entry.directory):
                logger.debug("Item ignored (has ignore marker) for path: %s", entry.directory)
                ignored.append(entry)
            else:
                active.append((entry, rank))

        if ignored:
            lookups = await asyncio.gather(
                *(self.resolve_item(entry) for entry in ignored), return_exceptions=True
            )
            for entry, lookup in zip(ignored, lookups):
                item = lookup.item if isinstance(lookup, ItemFound) else None
                outcome.skipped.append(SkippedItem(entry.directory, item))

        lookups = await asyncio.gather(
            *(self.resolve_item(entry) for entry, _ in active), return_exceptions=True
        )
        found: list[tuple[DirectoryEntry, DirectoryRank, LocalRecord]] = []
        for (entry, rank), lookup in zip(active, lookups):
            if isinstance(lookup, BaseException):
                logger.warning("Failed to look up item for %s: %s", entry.directory, lookup)
                outcome.failures.append(entry.directory)
            elif isinstance(lookup, ItemNotFound):
                logger.debug("Item not found for path: %s", entry.directory)
                outcome.failures.append(entry.directory)
            elif isinstance(lookup, KindMismatch):
                logger.debug(
                    "Item type mismatch for path %s: expected %s, found %s",
                    entry.directory,
                    lookup.expected,
                    lookup.actual,
                )
                outcome.failures.append(entry.directory)
            else:
                found.append((entry, rank, lookup.item))

        await self._apply_play_counts(user, found, outcome)
        await self._apply_play_status(user, [item for _, _, item in found])
        return outcome

    async def _apply_play_counts(
        self,
        user: UserAccount,
        found: list[tuple[DirectoryEntry, DirectoryRank, LocalRecord]],
        outcome: UserOutcome,
    ) -> None:
        if not found:
            return

        tasks = [
            (asyncio.create_task(self.update_play_count(user, item, rank)), entry, rank, item)
            for entry, rank, item in found
        ]
        done, _ = await asyncio.wait([task for task, _, _, _ in tasks])
        if any(task.cancelled() or task.exception() is not None for task in done):
            logger.warning(
                "Some play count update tasks failed for user %s. Processing all results individually.",
                user.name,
            )

        for task, entry, rank, item in tasks:
            if task.cancelled():
                logger.warning(
                    "Play count update cancelled for user %s, item: %s", user.name, entry.directory
                )
                outcome.failures.append(entry.directory)
                continue
            error = task.exception()
            if error is not None:
                logger.warning(
                    "Failed to update play count for user %s, item %s: %s",
                    user.name,
                    entry.directory,
                    error,
                )
                outcome.failures.append(entry.directory)
                continue
            result = task.result()
            if result.success:
                logger.debug(
                    "Updated play count for user %s, item %s (%s) to %s",
                    user.name,
                    item.name,
                    entry.directory,
                    rank.score,
                )
                outcome.successes.append(SortedItem(user.id, item, rank.score))
            else:
                logger.warning(
                    "Failed to update play count for user %s, item %s: %s",
                    user.name,
                    entry.directory,
                    result.message,
                )
                outcome.failures.append(entry.directory)

    async def _apply_play_status(self, user: UserAccount, items: list[LocalRecord]) -> None:
        if not items:
            return
        results = await asyncio.gather(
            *(self.mark_play_status(user, item) for item in items), return_exceptions=True
        )
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Failed to mark play status for user %s, item %s: %s",
                    user.name,
                    item.name,
                    result,
                )
            elif not result.success:
                logger.debug(result.message)

    async def update_play_count(
        self, user: UserAccount, item: LocalRecord, rank: DirectoryRank
    ) -> StateUpdate:
        """Store the play count and last played date; the played flag is left alone."""

        state = await self._state_store.get_user_state(user, item.id)
        played_at = (
            datetime.combine(rank.played_on, time.min, tzinfo=timezone.utc)
            if rank.played_on is not None
            else None
        )
        updated = state.model_copy(
            update={"play_count": rank.score, "last_played_date": played_at}
        )
        await self._state_store.save_user_state(user, item.id, updated, "import")
        return StateUpdate(True, "Play count and last played date updated successfully")

    async def mark_play_status(self, user: UserAccount, item: LocalRecord) -> StateUpdate:
        """Set the played flag on the movie, or on the show's placeholder episode."""

        target: LocalRecord | None = item
        if item.kind == "show":
            target = await self._catalog.find_placeholder_episode(item, user_id=user.id)
            if target is None:
                return StateUpdate(False, f"No placeholder episode found for show '{item.name}'")

        state = await self._state_store.get_user_state(user, target.id)
        status = "played" if self._mark_played else "not played"
        if state.played == self._mark_played:
            return StateUpdate(False, f"'{item.name}' is already marked as {status}")

        updated = state.model_copy(update={"played": self._mark_played})
        await self._state_store.save_user_state(user, target.id, updated, "import")
        return StateUpdate(True, f"Marked '{item.name}' as {status}")
