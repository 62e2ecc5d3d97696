"""End-to-end behaviour of the sort orchestration."""

from __future__ import annotations

import asyncio
import random
from pathlib import Path

import pytest

from bridge.models import UserAccount, VirtualFolder
from bridge.services.library import ManagedLibrary
from bridge.services.ranking import RankingEngine
from bridge.services.sort_service import SortService
from bridge.services.updates import UpdateApplier
from fakes import (
    FakeCatalog,
    FakeStateStore,
    FakeUsers,
    build_settings,
    make_local,
    make_record,
)

ALICE = UserAccount(id="u1", name="alice")
BOB = UserAccount(id="u2", name="bob")


def build_service(
    tmp_path: Path,
    *,
    users=(ALICE, BOB),
    titles: int = 3,
    catalog_items=(),
    fail_listing: bool = False,
    create_root: bool = True,
) -> tuple[SortService, FakeStateStore, FakeCatalog]:
    settings = build_settings(tmp_path)
    root = settings.library_directory
    catalog = FakeCatalog(
        list(catalog_items),
        folders=[
            VirtualFolder(
                name="Managed Movies", locations=[str(root / "Movies")], item_id="lib"
            )
        ],
        fail_listing=fail_listing,
    )
    library = ManagedLibrary(settings, catalog)
    if create_root:
        root.mkdir(parents=True, exist_ok=True)
        for index in range(titles):
            record = make_record(str(index), title=f"Movie {index}")
            directory = library.item_directory(record)
            library.write_metadata(directory, record)
            catalog.items.append(make_local(f"m{index}", "movie", directory))
    store = FakeStateStore()
    service = SortService(
        FakeUsers(users),
        library,
        RankingEngine(catalog, managed_root=library.root, rng=random.Random(3)),
        UpdateApplier(catalog, store, library),
        default_order="random",
    )
    return service, store, catalog


def test_sort_library_updates_every_user(tmp_path: Path) -> None:
    service, store, _ = build_service(tmp_path)

    result = asyncio.run(service.sort_library())

    assert result.success is True
    assert result.message == "Sort library completed successfully"
    assert result.processed == 3
    assert len(result.successes) == 6
    for user in (ALICE, BOB):
        counts = sorted(
            state.play_count
            for (user_id, _), state in store.states.items()
            if user_id == user.id
        )
        assert counts == [100, 200, 300]
    payload = result.to_payload()
    assert payload["sorted"] == 6
    assert payload["sortOrder"] == "random"


def test_sort_library_without_users_fails(tmp_path: Path) -> None:
    service, store, _ = build_service(tmp_path, users=())

    result = asyncio.run(service.sort_library())

    assert result.success is False
    assert result.message == "No users found - cannot update play counts"
    assert store.saves == []


def test_sort_library_without_directories_fails(tmp_path: Path) -> None:
    service, _, _ = build_service(tmp_path, titles=0)

    result = asyncio.run(service.sort_library())

    assert result.success is False
    assert result.message == "No directories found to update"


def test_sort_library_requires_writable_root(tmp_path: Path) -> None:
    service, _, _ = build_service(tmp_path, create_root=False)

    result = asyncio.run(service.sort_library())

    assert result.success is False
    assert "not writable" in result.message


def test_order_override_and_validation(tmp_path: Path) -> None:
    service, store, _ = build_service(tmp_path, users=(ALICE,))

    result = asyncio.run(service.sort_library("zero"))

    assert result.sort_order == "none"
    assert {state.play_count for state in store.states.values()} == {0}
    with pytest.raises(ValueError):
        asyncio.run(service.sort_library("alphabetical"))


def test_unreadable_user_library_skips_smart_sort(tmp_path: Path) -> None:
    """A user whose library cannot be read contributes no outcomes."""

    service, store, _ = build_service(tmp_path, users=(ALICE,), fail_listing=True)

    result = asyncio.run(service.sort_library("smart"))

    assert result.success is True
    assert result.successes == [] and result.failures == [] and result.skipped == []
    assert store.saves == []


def test_sort_library_refreshes_libraries_after_updates(tmp_path: Path) -> None:
    service, _, catalog = build_service(tmp_path, users=(ALICE,))

    asyncio.run(service.sort_library())

    assert catalog.refreshes == [("lib", "default")]


def test_users_draw_from_separate_random_sources(tmp_path: Path) -> None:
    service, store, _ = build_service(tmp_path, titles=12)

    result = asyncio.run(service.sort_library())

    assert result.success is True
    counts: dict[str, dict[str, int]] = {ALICE.id: {}, BOB.id: {}}
    for (user_id, item_id), state in store.states.items():
        counts[user_id][item_id] = state.play_count
    alice, bob = counts[ALICE.id], counts[BOB.id]
    assert sorted(alice.values()) == sorted(bob.values()) == [100 * (i + 1) for i in range(12)]
    assert alice != bob
