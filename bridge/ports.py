"""Interfaces the bridge services expect from their collaborators."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol, runtime_checkable

from .models import (
    LocalRecord,
    MediaKind,
    MetadataRecord,
    RefreshMode,
    SaveReason,
    StateChange,
    UserAccount,
    UserItemState,
    VirtualFolder,
)

StateListener = Callable[[StateChange], Awaitable[None]]


@runtime_checkable
class CatalogLookup(Protocol):
    """Read access to the items and libraries registered with the media host."""

    async def list_items(
        self, kind: MediaKind, *, user_id: str | None = None
    ) -> list[LocalRecord]:
        ...

    async def find_item_by_directory(self, directory: str) -> LocalRecord | None:
        ...

    async def list_virtual_folders(self) -> list[VirtualFolder]:
        ...

    async def find_placeholder_episode(
        self, show: LocalRecord, *, user_id: str | None = None
    ) -> LocalRecord | None:
        ...

    async def refresh_item(self, item_id: str, *, mode: RefreshMode = "default") -> None:
        ...


@runtime_checkable
class MetadataProvider(Protocol):
    """Source of metadata records for titles the bridge manages."""

    async def list_records(
        self,
        kind: MediaKind | None = None,
        *,
        directories: Iterable[str] | None = None,
    ) -> list[MetadataRecord]:
        ...


@runtime_checkable
class UserStateStore(Protocol):
    """Per-user playback state persisted by the media host."""

    async def get_user_state(self, user: UserAccount, item_id: str) -> UserItemState:
        ...

    async def save_user_state(
        self,
        user: UserAccount,
        item_id: str,
        state: UserItemState,
        reason: SaveReason,
    ) -> None:
        ...

    def subscribe(self, listener: StateListener) -> None:
        ...

    def unsubscribe(self, listener: StateListener) -> None:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """Lookup of the users registered with the media host."""

    async def list_users(self) -> list[UserAccount]:
        ...

    async def get_user(self, user_id: str) -> UserAccount | None:
        ...


__all__ = [
    "CatalogLookup",
    "MetadataProvider",
    "StateListener",
    "UserDirectory",
    "UserStateStore",
]
