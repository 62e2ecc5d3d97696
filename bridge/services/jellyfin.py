"""Utilities for communicating with the Jellyfin HTTP API."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import BridgeError, IncompatibleHostError
from ..models import (
    MEDIA_KINDS,
    LocalRecord,
    MediaKind,
    RefreshMode,
    SaveReason,
    StateChange,
    UserAccount,
    UserItemState,
    VirtualFolder,
)
from ..ports import StateListener
from ..utils import path_key

logger = logging.getLogger(__name__)

ITEM_TYPES: dict[str, str] = {"movie": "Movie", "show": "Series"}
ITEM_FIELDS = "Path,Genres,ProviderIds"

_UNSUPPORTED_STATUS = {404, 405, 501}


class JellyfinClient:
    """Thin wrapper around the Jellyfin API.

    The client is the catalog lookup, user state store and user directory of
    the bridge. Directory lookups go through an in-memory path index that is
    rebuilt at most once per ``CATALOG_CACHE_TTL`` seconds.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        retry_delay: float = 1.0,
    ):
        self._settings = settings
        self._client = http_client
        self._max_retries = 2
        self._retry_delay = retry_delay
        self._cache_seconds = settings.catalog_cache_seconds
        self._path_index: dict[str, LocalRecord] | None = None
        self._index_loaded_at = 0.0
        self._index_lock = asyncio.Lock()
        self._listeners: list[StateListener] = []

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (mediabridge)",
        }
        api_key = self._settings.jellyfin_api_key
        if api_key:
            headers["X-Emby-Token"] = api_key
            headers["Authorization"] = f'MediaBrowser Token="{api_key}"'
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method, path, params=params, json=json, headers=self._headers()
                )
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._retry_delay * attempt
                    logger.info(
                        "Transient error talking to Jellyfin (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise

            if 500 <= response.status_code < 600 and response.status_code not in _UNSUPPORTED_STATUS:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._retry_delay * attempt
                    logger.info(
                        "Jellyfin %s for %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            return response

    async def _get_json(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        response = await self._request("GET", path, params=params)
        if response.status_code == 404 and allow_missing:
            return None
        if response.status_code in _UNSUPPORTED_STATUS:
            raise IncompatibleHostError(
                f"Jellyfin does not support {path} (HTTP {response.status_code})"
            )
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise BridgeError(f"Unexpected non-JSON Jellyfin response for {path}") from exc

    # Users

    async def list_users(self) -> list[UserAccount]:
        data = await self._get_json("/Users")
        if not isinstance(data, list):
            raise BridgeError("Unexpected Jellyfin response structure for /Users")
        return [UserAccount.model_validate(entry) for entry in data]

    async def get_user(self, user_id: str) -> UserAccount | None:
        data = await self._get_json(f"/Users/{user_id}", allow_missing=True)
        if data is None:
            return None
        return UserAccount.model_validate(data)

    # Catalog

    async def list_items(
        self, kind: MediaKind, *, user_id: str | None = None
    ) -> list[LocalRecord]:
        params: dict[str, Any] = {
            "Recursive": "true",
            "IncludeItemTypes": ITEM_TYPES[kind],
            "Fields": ITEM_FIELDS,
        }
        if user_id:
            params["userId"] = user_id
        data = await self._get_json("/Items", params=params)
        entries = data.get("Items") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise BridgeError("Unexpected Jellyfin response structure for /Items")

        items: list[LocalRecord] = []
        for entry in entries:
            try:
                items.append(LocalRecord.model_validate(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed Jellyfin item %s: %s",
                    entry.get("Id") if isinstance(entry, dict) else entry,
                    exc,
                )
        return items

    async def list_virtual_folders(self) -> list[VirtualFolder]:
        data = await self._get_json("/Library/VirtualFolders")
        if not isinstance(data, list):
            raise BridgeError("Unexpected Jellyfin response structure for virtual folders")
        return [VirtualFolder.model_validate(entry) for entry in data]

    async def find_item_by_directory(self, directory: str) -> LocalRecord | None:
        index = await self._load_path_index()
        return index.get(path_key(directory))

    async def find_placeholder_episode(
        self, show: LocalRecord, *, user_id: str | None = None
    ) -> LocalRecord | None:
        """Return the ``S00E00`` episode that stands in for ``show``."""

        params: dict[str, Any] = {"season": 0, "Fields": "Path"}
        if user_id:
            params["userId"] = user_id
        data = await self._get_json(f"/Shows/{show.id}/Episodes", params=params)
        entries = data.get("Items", []) if isinstance(data, dict) else []
        for entry in entries:
            if entry.get("ParentIndexNumber") == 0 and entry.get("IndexNumber") == 0:
                return LocalRecord(
                    id=str(entry["Id"]),
                    kind="show",
                    name=entry.get("Name") or show.name,
                    path=entry.get("Path"),
                )
        return None

    async def refresh_item(self, item_id: str, *, mode: RefreshMode = "default") -> None:
        """Queue a recursive metadata refresh of ``item_id`` on the server.

        ``default`` reloads changed data only, ``full`` rescans everything and
        ``replace`` also discards the stored metadata and images.
        """

        full = mode != "default"
        replace = mode == "replace"
        params = {
            "Recursive": "true",
            "MetadataRefreshMode": "FullRefresh" if full else "Default",
            "ImageRefreshMode": "FullRefresh" if full else "Default",
            "ReplaceAllMetadata": str(replace).lower(),
            "ReplaceAllImages": str(replace).lower(),
            "RegenerateTrickplay": "false",
        }
        path = f"/Items/{item_id}/Refresh"
        response = await self._request("POST", path, params=params)
        if response.status_code in _UNSUPPORTED_STATUS:
            raise IncompatibleHostError(
                f"Jellyfin does not support {path} (HTTP {response.status_code})"
            )
        response.raise_for_status()
        # Cached paths go stale once the server rescans the library.
        self._path_index = None

    async def _load_path_index(self) -> dict[str, LocalRecord]:
        async with self._index_lock:
            age = time.monotonic() - self._index_loaded_at
            if self._path_index is not None and age < self._cache_seconds:
                return self._path_index

            index: dict[str, LocalRecord] = {}
            for kind in MEDIA_KINDS:
                for item in await self.list_items(kind):
                    if not item.path:
                        continue
                    index[path_key(item.path)] = item
                    if item.kind == "movie":
                        # Movies report their video file; managed lookups use the folder.
                        index.setdefault(path_key(os.path.dirname(item.path)), item)
            self._path_index = index
            self._index_loaded_at = time.monotonic()
            logger.debug("Indexed %s Jellyfin item paths", len(index))
            return index

    # User state

    async def get_user_state(self, user: UserAccount, item_id: str) -> UserItemState:
        data = await self._get_json(
            f"/UserItems/{item_id}/UserData", params={"userId": user.id}
        )
        return UserItemState.model_validate(data or {})

    async def save_user_state(
        self,
        user: UserAccount,
        item_id: str,
        state: UserItemState,
        reason: SaveReason,
    ) -> None:
        path = f"/UserItems/{item_id}/UserData"
        response = await self._request(
            "POST", path, params={"userId": user.id}, json=state.to_payload()
        )
        if response.status_code in _UNSUPPORTED_STATUS:
            raise IncompatibleHostError(
                f"Jellyfin does not support {path} (HTTP {response.status_code})"
            )
        response.raise_for_status()
        await self._notify(StateChange(user.id, item_id, reason, state))

    def subscribe(self, listener: StateListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, change: StateChange) -> None:
        for listener in list(self._listeners):
            try:
                await listener(change)
            except Exception:
                logger.exception("State change listener failed for item %s", change.item_id)
