"""Configuration settings behaviour tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from bridge.config import Settings, normalize_sort_order


def test_sort_order_defaults_to_random() -> None:
    settings = Settings(_env_file=None)

    assert settings.sort_order == "random"
    assert settings.mark_media_played is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("Smart", "smart"), ("zero", "none"), (" SmartISH ", "smartish"), ("", "random")],
)
def test_sort_order_aliases_are_normalized(raw: str, expected: str) -> None:
    """Older spellings of the strategies should map onto the canonical names."""

    settings = Settings(_env_file=None, SORT_ORDER=raw)

    assert settings.sort_order == expected


def test_sort_order_rejects_unknown_values() -> None:
    with pytest.raises(ValueError, match="sort order must be one of"):
        Settings(_env_file=None, SORT_ORDER="alphabetical")

    with pytest.raises(ValueError):
        normalize_sort_order("popularity")


def test_library_directory_is_expanded(tmp_path: Path) -> None:
    settings = Settings(_env_file=None, LIBRARY_DIRECTORY=f"  {tmp_path}  ")

    assert settings.library_directory == tmp_path


def test_blank_library_directory_is_rejected() -> None:
    with pytest.raises(ValueError, match="LIBRARY_DIRECTORY"):
        Settings(_env_file=None, LIBRARY_DIRECTORY="   ")


def test_duplicates_by_folder_requires_both_toggles() -> None:
    """Duplicate placement only applies when network folders are enabled as well."""

    only_duplicates = Settings(_env_file=None, ADD_DUPLICATE_CONTENT=True)
    both = Settings(_env_file=None, ADD_DUPLICATE_CONTENT=True, USE_NETWORK_FOLDERS=True)

    assert only_duplicates.duplicates_by_folder is False
    assert both.duplicates_by_folder is True


def test_catalog_cache_ttl_is_bounded() -> None:
    with pytest.raises(ValueError):
        Settings(_env_file=None, CATALOG_CACHE_TTL=-1)


def test_package_exports_resolve_lazily() -> None:
    import bridge
    from bridge.config import get_settings

    assert bridge.get_settings is get_settings
    with pytest.raises(AttributeError):
        bridge.sort_library  # noqa: B018
