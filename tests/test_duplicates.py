"""Duplicate filtering of candidate records against the managed libraries."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from bridge.models import VirtualFolder
from bridge.services.duplicates import DuplicateResolver
from bridge.services.library import ManagedLibrary
from fakes import FakeCatalog, build_settings, make_record


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_resolver(tmp_path: Path, folders: list[VirtualFolder]) -> tuple[DuplicateResolver, ManagedLibrary]:
    settings = build_settings(tmp_path, USE_NETWORK_FOLDERS=True)
    settings.library_directory.mkdir(parents=True, exist_ok=True)
    library = ManagedLibrary(settings, FakeCatalog(folders=folders))
    return DuplicateResolver(library), library


@pytest.mark.anyio("asyncio")
async def test_filter_new_places_tagged_candidates(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    resolver, library = build_resolver(
        tmp_path, [VirtualFolder(name="Netflix", locations=[str(root / "Netflix")])]
    )
    matrix = make_record("603", title="The Matrix", network="Netflix")
    untagged = make_record("604", title="The Matrix Reloaded")
    unregistered = make_record("1396", kind="show", title="Breaking Bad", network="AMC")

    placements = await resolver.filter_new([matrix, matrix, untagged, unregistered])

    assert [(entry.library, entry.record.id) for entry in placements] == [
        ("Netflix", "603"),
        ("", "1396"),
    ]
    assert placements[0].directory == str(library.item_directory(matrix))
    assert placements[1].directory == str(library.item_directory(unregistered))


@pytest.mark.anyio("asyncio")
async def test_filter_new_is_idempotent_once_realized(tmp_path: Path) -> None:
    """Writing the placements and asking again should produce nothing new."""

    root = tmp_path / "managed"
    resolver, library = build_resolver(
        tmp_path, [VirtualFolder(name="Netflix", locations=[str(root / "Netflix")])]
    )
    candidates = [
        make_record("603", title="The Matrix", network="Netflix"),
        make_record("1396", kind="show", title="Breaking Bad", network="AMC"),
    ]

    first = await resolver.filter_new(candidates)
    for entry in first:
        library.write_metadata(entry.directory, entry.record)
    second = await resolver.filter_new(candidates)

    assert len(first) == 2
    assert second == []


@pytest.mark.anyio("asyncio")
async def test_filter_new_drops_titles_already_in_the_library(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    resolver, library = build_resolver(
        tmp_path, [VirtualFolder(name="Netflix", locations=[str(root / "Netflix")])]
    )
    # Same title stored under an older folder name.
    library.write_metadata(
        root / "Netflix" / "Matrix, The", make_record("603", title="Matrix, The")
    )

    placements = await resolver.filter_new(
        [make_record("603", title="The Matrix", network="Netflix")]
    )

    assert placements == []


@pytest.mark.anyio("asyncio")
async def test_filter_new_requires_a_managed_library(tmp_path: Path) -> None:
    resolver, _ = build_resolver(
        tmp_path, [VirtualFolder(name="Movies", locations=[str(tmp_path / "media")])]
    )

    assert await resolver.filter_new([make_record("603", network="Netflix")]) == []
    assert await resolver.filter_new([]) == []


def test_filter_new_never_raises(tmp_path: Path) -> None:
    class ExplodingLibrary:
        async def managed_libraries(self):
            raise RuntimeError("boom")

    resolver = DuplicateResolver(ExplodingLibrary())  # type: ignore[arg-type]

    assert asyncio.run(resolver.filter_new([make_record("1", network="Netflix")])) == []


@pytest.mark.anyio("asyncio")
async def test_filter_new_keeps_first_title_across_directories(tmp_path: Path) -> None:
    root = tmp_path / "managed"
    resolver, library = build_resolver(
        tmp_path, [VirtualFolder(name="Netflix", locations=[str(root / "Netflix")])]
    )
    first = make_record("603", title="The Matrix", network="Netflix")
    renamed = make_record("603", title="Matrix", network="Netflix")
    assert library.item_directory(first) != library.item_directory(renamed)

    placements = await resolver.filter_new([first, renamed])

    assert [(entry.library, entry.directory) for entry in placements] == [
        ("Netflix", str(library.item_directory(first)))
    ]
