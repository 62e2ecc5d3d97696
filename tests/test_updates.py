"""Tests for applying rankings to per-user state."""

from __future__ import annotations

from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from bridge.models import (
    DirectoryEntry,
    DirectoryRank,
    RankingResult,
    UserAccount,
    UserItemState,
)
from bridge.services.library import ManagedLibrary
from bridge.services.updates import UpdateApplier
from fakes import FakeCatalog, FakeStateStore, build_settings, make_local

USER = UserAccount(id="u1", name="alice")


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_library(tmp_path: Path, catalog: FakeCatalog) -> ManagedLibrary:
    settings = build_settings(tmp_path)
    settings.library_directory.mkdir(parents=True, exist_ok=True)
    return ManagedLibrary(settings, catalog)


def movie_dirs(root: Path, *names: str) -> list[Path]:
    paths = []
    for name in names:
        path = root / "Movies" / name
        path.mkdir(parents=True, exist_ok=True)
        paths.append(path)
    return paths


def ranking(paths: list[Path], kind: str = "movie", score: int = 100) -> RankingResult:
    return RankingResult(
        user_id=USER.id,
        strategy="random",
        ranks={
            DirectoryEntry(str(path), kind): DirectoryRank(score * (index + 1), date(2024, 5, 9))
            for index, path in enumerate(paths)
        },
    )


@pytest.mark.anyio("asyncio")
async def test_ignored_directories_are_only_skipped(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    ignored, active = movie_dirs(root, "ignored", "active")
    (ignored / ".ignore").write_text("", encoding="utf-8")
    catalog = FakeCatalog(
        [make_local("i", "movie", ignored), make_local("a", "movie", active)]
    )
    store = FakeStateStore()
    applier = UpdateApplier(catalog, store, build_library(tmp_path, catalog))

    outcome = await applier.apply(USER, ranking([ignored, active]))

    assert [entry.directory for entry in outcome.skipped] == [str(ignored)]
    assert outcome.skipped[0].item is not None and outcome.skipped[0].item.id == "i"
    assert [item.item.id for item in outcome.successes] == ["a"]
    assert outcome.failures == []
    assert {item_id for _, item_id, _, _ in store.saves} == {"a"}


@pytest.mark.anyio("asyncio")
async def test_faulted_updates_are_classified_individually(tmp_path: Path) -> None:
    """Five updates where two saves fault give three successes and two failures."""

    root = tmp_path / "managed"
    paths = movie_dirs(root, "m0", "m1", "m2", "m3", "m4")
    catalog = FakeCatalog(
        [make_local(f"m{index}", "movie", path) for index, path in enumerate(paths)]
    )
    store = FakeStateStore(failing_items={"m1", "m3"})
    applier = UpdateApplier(catalog, store, build_library(tmp_path, catalog))

    outcome = await applier.apply(USER, ranking(paths))

    assert sorted(item.item.id for item in outcome.successes) == ["m0", "m2", "m4"]
    assert sorted(outcome.failures) == sorted([str(paths[1]), str(paths[3])])
    assert outcome.skipped == []


@pytest.mark.anyio("asyncio")
async def test_missing_and_mismatched_items_fail(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    missing, show_dir = movie_dirs(root, "missing", "actually-a-show")
    catalog = FakeCatalog([make_local("s", "show", show_dir)])
    store = FakeStateStore()
    applier = UpdateApplier(catalog, store, build_library(tmp_path, catalog))

    outcome = await applier.apply(USER, ranking([missing, show_dir]))

    assert outcome.failures == [str(missing), str(show_dir)]
    assert outcome.successes == []
    assert store.saves == []


@pytest.mark.anyio("asyncio")
async def test_play_count_keeps_played_flag_and_sets_date(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    (path,) = movie_dirs(root, "movie")
    catalog = FakeCatalog([make_local("m", "movie", path)])
    store = FakeStateStore()
    applier = UpdateApplier(catalog, store, build_library(tmp_path, catalog))

    outcome = await applier.apply(USER, ranking([path], score=300))

    state = store.states[(USER.id, "m")]
    assert [item.play_count for item in outcome.successes] == [300]
    assert state.play_count == 300
    assert state.played is False
    assert state.last_played_date == datetime(2024, 5, 9, tzinfo=timezone.utc)
    assert [reason for _, _, _, reason in store.saves] == ["import"]


@pytest.mark.anyio("asyncio")
async def test_mark_played_targets_show_placeholder(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    show_dir = root / "Shows" / "Severance"
    show_dir.mkdir(parents=True)
    show = make_local("show", "show", show_dir)
    placeholder = make_local("s00e00", "show", show_dir / "Season 00" / "S00E00.mkv")
    catalog = FakeCatalog([show], placeholders={"show": placeholder})
    store = FakeStateStore()
    applier = UpdateApplier(
        catalog, store, build_library(tmp_path, catalog), mark_played=True
    )

    outcome = await applier.apply(USER, ranking([show_dir], kind="show"))

    assert [item.item.id for item in outcome.successes] == ["show"]
    assert store.states[(USER.id, "s00e00")].played is True
    assert store.states[(USER.id, "show")].played is False

    # A second pass finds the flag already set and leaves it alone.
    saves_before = len(store.saves)
    await applier.apply(USER, ranking([show_dir], kind="show"))
    assert [item_id for _, item_id, _, _ in store.saves[saves_before:]] == ["show"]


@pytest.mark.anyio("asyncio")
async def test_play_status_failures_do_not_change_classification(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    show_dir = root / "Shows" / "Lost"
    show_dir.mkdir(parents=True)
    catalog = FakeCatalog([make_local("show", "show", show_dir)])
    store = FakeStateStore()
    applier = UpdateApplier(
        catalog, store, build_library(tmp_path, catalog), mark_played=True
    )

    outcome = await applier.apply(USER, ranking([show_dir], kind="show"))

    assert [item.item.id for item in outcome.successes] == ["show"]
    assert outcome.failures == []


@pytest.mark.anyio("asyncio")
async def test_state_writes_start_from_the_stored_state(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    (path,) = movie_dirs(root, "movie")
    movie = make_local("m", "movie", path)
    catalog = FakeCatalog([movie])
    store = FakeStateStore()
    store.states[(USER.id, "m")] = UserItemState(played=True, is_favorite=True, play_count=7)
    applier = UpdateApplier(catalog, store, build_library(tmp_path, catalog))

    counted = await applier.update_play_count(USER, movie, DirectoryRank(200, None))
    flagged = await applier.mark_play_status(USER, movie)

    state = store.states[(USER.id, "m")]
    assert counted.success is True and flagged.success is True
    assert state.play_count == 200
    assert state.last_played_date is None
    assert state.played is False
    assert state.is_favorite is True
