"""Orchestrate the per-user sort of the managed library."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..config import normalize_sort_order
from ..errors import RankingUnavailableError
from ..models import DirectoryEntry, SkippedItem, SortedItem, UserAccount, UserOutcome
from ..ports import UserDirectory
from .library import ManagedLibrary
from .ranking import RankingEngine
from .updates import UpdateApplier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SortResult:
    """Aggregated outcome of one sort run across all users."""

    success: bool
    message: str
    sort_order: str
    processed: int = 0
    users: int = 0
    successes: list[SortedItem] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "sortOrder": self.sort_order,
            "processed": self.processed,
            "users": self.users,
            "sorted": len(self.successes),
            "failed": len(self.failures),
            "skipped": len(self.skipped),
            "failedDirectories": list(self.failures),
            "skippedDirectories": [entry.directory for entry in self.skipped],
        }


class SortService:
    """Rank the managed directories for every user and apply the play counts."""

    def __init__(
        self,
        users: UserDirectory,
        library: ManagedLibrary,
        engine: RankingEngine,
        applier: UpdateApplier,
        *,
        default_order: str = "random",
    ) -> None:
        self._users = users
        self._library = library
        self._engine = engine
        self._applier = applier
        self._default_order = normalize_sort_order(default_order)

    async def sort_library(self, order: str | None = None) -> SortResult:
        """Run one sort pass.

        ``order`` overrides the configured strategy; unknown names raise
        ``ValueError``.
        """

        strategy = normalize_sort_order(order) if order is not None else self._default_order
        result = SortResult(success=False, message="", sort_order=strategy)

        try:
            users = await self._users.list_users()
        except Exception:
            logger.exception("Unable to list users")
            result.message = "Unable to list users - cannot update play counts"
            return result
        if not users:
            result.message = "No users found - cannot update play counts"
            logger.warning(result.message)
            return result

        if not await asyncio.to_thread(self._library.check_read_write):
            result.message = "Library directory is missing or not writable"
            logger.warning("%s: %s", result.message, self._library.root)
            return result

        directories = await self._library.list_directories()
        if not directories:
            result.message = "No directories found to update"
            logger.warning(result.message)
            return result

        logger.info(
            "Sorting %s directories for %s users using %s order",
            len(directories),
            len(users),
            strategy,
        )
        outcomes = await asyncio.gather(
            *(
                self._sort_for_user(user, directories, strategy, self._engine.spawn_rng())
                for user in users
            ),
            return_exceptions=True,
        )
        for user, outcome in zip(users, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Sort failed for user %s: %s", user.name, outcome)
                continue
            result.successes.extend(outcome.successes)
            result.failures.extend(outcome.failures)
            result.skipped.extend(outcome.skipped)

        result.success = True
        result.message = "Sort library completed successfully"
        result.processed = len(directories)
        result.users = len(users)
        logger.info(
            "Sort finished: %s sorted, %s failed, %s skipped",
            len(result.successes),
            len(result.failures),
            len(result.skipped),
        )
        if result.successes:
            await self._library.refresh()
        return result

    async def _sort_for_user(
        self,
        user: UserAccount,
        directories: Sequence[DirectoryEntry],
        strategy: str,
        rng: random.Random,
    ) -> UserOutcome:
        try:
            ranking = await self._engine.rank(user, directories, strategy, rng=rng)
        except RankingUnavailableError as exc:
            logger.warning("Skipping sort for user %s: %s", user.name, exc)
            return UserOutcome()
        if ranking is None:
            return UserOutcome()
        return await self._applier.apply(user, ranking)
