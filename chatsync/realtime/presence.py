import logging
from datetime import datetime, timezone
from typing import FrozenSet, Optional

from chatsync import config
from chatsync.utils.realtime_bus import BaseBus, Subscription


logger = logging.getLogger(__name__)


class PresenceTracker:
    """Online user ids as last reported by the shared presence channel.

    Each sync carries the full membership and replaces the local set outright;
    there is no merging with earlier syncs and no local expiry.
    """

    def __init__(self, bus: BaseBus, user_id: str, channel: Optional[str] = None) -> None:
        self._bus = bus
        self.user_id = user_id
        self.channel = channel or config.PRESENCE_CHANNEL
        self._online: FrozenSet[str] = frozenset()
        self._subscription: Optional[Subscription] = None
        self._ref: Optional[str] = None

    @property
    def online_user_ids(self) -> FrozenSet[str]:
        return self._online

    def is_online(self, user_id: str) -> bool:
        return user_id in self._online

    async def open(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = await self._bus.subscribe_presence(self.channel, self._on_sync)
        self._ref = await self._bus.track(
            self.channel,
            self.user_id,
            {"user_id": self.user_id, "online_at": datetime.now(timezone.utc).isoformat()},
        )

    async def close(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is not None:
            await sub.cancel()
        ref, self._ref = self._ref, None
        if ref is not None:
            await self._bus.untrack(self.channel, self.user_id, ref)
        self._online = frozenset()

    def _on_sync(self, payload: dict) -> None:
        keys = (payload or {}).get("keys") or []
        self._online = frozenset(keys)
        logger.debug("Presence sync on %s: %d online", self.channel, len(self._online))
