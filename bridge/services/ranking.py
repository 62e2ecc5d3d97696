"""Per-user play count strategies that drive the host's sort order."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import TypeVar

from ..errors import RankingUnavailableError
from ..models import (
    DirectoryEntry,
    DirectoryRank,
    LocalRecord,
    RankingResult,
    UserAccount,
)
from ..ports import CatalogLookup
from ..utils import is_path_under

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

# Spacing between random play counts. Playing an item bumps its count by one,
# which must never overtake the next item.
RANDOM_STEP = 100
SMART_BASE = 100
SMARTISH_SPREAD = 10


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def assign_play_dates(scores: Mapping[K, int], *, today: date) -> dict[K, date | None]:
    """Derive a last-played date for every key from its score.

    The lowest non-zero score gets yesterday, each following distinct score one
    day earlier. Sorting by last played, newest first, therefore reproduces the
    ascending score order. A score of zero has no date.
    """

    distinct = sorted({score for score in scores.values() if score > 0})
    newest = today - timedelta(days=1)
    dates = {score: newest - timedelta(days=index) for index, score in enumerate(distinct)}
    return {key: (dates[score] if score > 0 else None) for key, score in scores.items()}


def build_genre_weights(items: Iterable[LocalRecord]) -> dict[str, int]:
    """Count genres across ``items`` (case-insensitively) and add one to each."""

    counts: Counter[str] = Counter()
    for item in items:
        for genre in item.genres:
            if genre:
                counts[genre.casefold()] += 1
    return {genre: count + 1 for genre, count in counts.items()}


def genre_score(genres: Iterable[str], weights: Mapping[str, int], top: int) -> int:
    """Return the smart play count for an item with ``genres``.

    Items the user's library favours get the lowest counts.
    """

    matching = [weights[key] for key in (g.casefold() for g in genres if g) if key in weights]
    raw = round(sum(matching) / len(matching)) if matching else 0
    return (top - raw) + SMART_BASE


class RankingEngine:
    """Compute play counts for managed directories under a sort strategy."""

    def __init__(
        self,
        catalog: CatalogLookup,
        *,
        managed_root: Path | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._catalog = catalog
        self._managed_root = managed_root
        self._rng = rng or random.Random()
        self._clock = clock

    def spawn_rng(self) -> random.Random:
        """Return an independent random source seeded from the engine's own."""

        return random.Random(self._rng.getrandbits(64))

    async def rank(
        self,
        user: UserAccount,
        directories: Sequence[DirectoryEntry],
        strategy: str,
        *,
        rng: random.Random | None = None,
    ) -> RankingResult | None:
        """Return the ranking for ``user`` or ``None`` when there is nothing to rank."""

        if not directories:
            logger.debug("No directories found to rank for %s", user.name)
            return None

        rng = rng or self._rng
        if strategy == "none":
            scores = self.score_zero(directories)
        elif strategy == "random":
            scores = self.score_random(directories, rng=rng)
        elif strategy == "smart":
            scores = await self.score_smart(user, directories, rng=rng)
        elif strategy == "smartish":
            scores = await self.score_smartish(user, directories, rng=rng)
        else:
            logger.warning(
                "Unknown sort order %s, defaulting to none for user %s", strategy, user.name
            )
            strategy = "none"
            scores = self.score_zero(directories)

        dates = assign_play_dates(scores, today=self._clock().date())
        ranks = {
            entry: DirectoryRank(score, dates[entry]) for entry, score in scores.items()
        }
        return RankingResult(user_id=user.id, strategy=strategy, ranks=ranks)

    @staticmethod
    def score_zero(directories: Sequence[DirectoryEntry]) -> dict[DirectoryEntry, int]:
        return {entry: 0 for entry in directories}

    def score_random(
        self,
        directories: Sequence[DirectoryEntry],
        *,
        rng: random.Random | None = None,
    ) -> dict[DirectoryEntry, int]:
        """Assign a fresh permutation of ``100, 200, ... 100 * N``."""

        values = [RANDOM_STEP * (index + 1) for index in range(len(directories))]
        (rng or self._rng).shuffle(values)
        return dict(zip(directories, values))

    async def score_smart(
        self,
        user: UserAccount,
        directories: Sequence[DirectoryEntry],
        *,
        rng: random.Random | None = None,
    ) -> dict[DirectoryEntry, int]:
        """Score directories by how well their genres fit the user's own library.

        Directories whose lookup fails are scored randomly as one batch;
        directories the host does not know about get zero.
        """

        weights = await self._user_genre_weights(user)
        top = max(weights.values(), default=0)

        lookups = await asyncio.gather(
            *(self._catalog.find_item_by_directory(entry.directory) for entry in directories),
            return_exceptions=True,
        )

        scores: dict[DirectoryEntry, int] = {}
        failed: list[DirectoryEntry] = []
        for entry, found in zip(directories, lookups):
            if isinstance(found, BaseException):
                logger.debug(
                    "Failed to look up %s for smart sort: %s", entry.directory, found
                )
                failed.append(entry)
                continue
            if found is None:
                scores[entry] = 0
                continue
            scores[entry] = genre_score(found.genres, weights, top)

        if failed:
            logger.debug("Applying random sort fallback to %s directories", len(failed))
            scores.update(self.score_random(failed, rng=rng))
        return scores

    async def score_smartish(
        self,
        user: UserAccount,
        directories: Sequence[DirectoryEntry],
        *,
        rng: random.Random | None = None,
    ) -> dict[DirectoryEntry, int]:
        """Smart scores with an independent random offset added to each item."""

        smart = await self.score_smart(user, directories, rng=rng)
        if not smart:
            return smart
        spread = max(smart.values()) - min(smart.values())
        source = rng or self._rng
        return {
            entry: score + source.randint(0, spread + SMARTISH_SPREAD)
            for entry, score in smart.items()
        }

    async def _user_genre_weights(self, user: UserAccount) -> dict[str, int]:
        try:
            movies = await self._catalog.list_items("movie", user_id=user.id)
            shows = await self._catalog.list_items("show", user_id=user.id)
        except Exception as exc:
            raise RankingUnavailableError(
                f"Unable to read the library of {user.name or user.id}"
            ) from exc

        owned = [
            item
            for item in (*movies, *shows)
            if not (
                self._managed_root is not None
                and item.path
                and is_path_under(item.path, self._managed_root)
            )
        ]
        return build_genre_weights(owned)
