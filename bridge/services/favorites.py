"""Log when a user marks an item as a favorite."""

from __future__ import annotations

import logging

from ..models import StateChange
from ..ports import UserDirectory, UserStateStore

logger = logging.getLogger(__name__)


class FavoriteWatcher:
    """Listen for rating saves on the state store and report new favorites."""

    def __init__(self, state_store: UserStateStore, users: UserDirectory) -> None:
        self._state_store = state_store
        self._users = users
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._state_store.subscribe(self.on_state_saved)
        self._started = True
        logger.debug("Favorite watcher started")

    async def stop(self) -> None:
        if not self._started:
            return
        self._state_store.unsubscribe(self.on_state_saved)
        self._started = False
        logger.debug("Favorite watcher stopped")

    async def on_state_saved(self, change: StateChange) -> None:
        if change.reason != "update_user_rating" or not change.state.is_favorite:
            return
        try:
            user = await self._users.get_user(change.user_id)
        except Exception:
            logger.exception("Error resolving user %s for favorite event", change.user_id)
            return
        if user is None:
            logger.debug("Favorite saved for unknown user %s", change.user_id)
            return
        logger.info("User %s marked item %s as favorite", user.name, change.item_id)
