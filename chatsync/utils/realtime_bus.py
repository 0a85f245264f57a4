import asyncio
import inspect
import json
import logging
import time
import uuid
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

import redis.asyncio as redis

from chatsync.schemas.events import PRESENCE_SYNC, UPDATE, changes_channel


logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[Awaitable[None], None]]

ANY_EVENT = "*"


def presence_channel(channel: str) -> str:
    return f"presence:{channel}"


def _presence_entry(key: str, ref: str) -> str:
    return f"{key}#{ref}"


def _presence_key(entry: str) -> str:
    return entry.rsplit("#", 1)[0]


class Subscription:
    """One (channel, event) binding with a replaceable handler slot.

    The slot can be swapped with set_handler() while the subscription stays
    attached, so consumers never re-subscribe just because their callback
    changed. Once cancelled, dispatch is a no-op.
    """

    def __init__(self, bus: "BaseBus", channel: str, event: str, handler: Optional[Handler]) -> None:
        self._bus = bus
        self.channel = channel
        self.event = event
        self.handler = handler
        self.active = True

    def set_handler(self, handler: Optional[Handler]) -> None:
        self.handler = handler

    def matches(self, event: str) -> bool:
        return self.event == ANY_EVENT or self.event == event

    async def dispatch(self, payload: Any) -> None:
        handler = self.handler
        if not self.active or handler is None:
            return
        result = handler(payload)
        if inspect.isawaitable(result):
            await result

    async def cancel(self) -> None:
        if not self.active:
            return
        await self._bus.unsubscribe(self)


class BaseBus:

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = defaultdict(list)
        self.is_open = False

    async def open(self) -> None:
        self.is_open = True

    async def close(self) -> None:
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.active = False
        self._subscriptions.clear()
        self.is_open = False

    async def subscribe(self, channel: str, event: str, handler: Optional[Handler]) -> Subscription:
        sub = Subscription(self, channel, event, handler)
        first = not self._subscriptions[channel]
        self._subscriptions[channel].append(sub)
        if first:
            await self._attach(channel)
        return sub

    async def unsubscribe(self, sub: Subscription) -> None:
        sub.active = False
        subs = self._subscriptions.get(sub.channel)
        if not subs or sub not in subs:
            return
        subs.remove(sub)
        if not subs:
            del self._subscriptions[sub.channel]
            await self._detach(sub.channel)

    async def subscribe_changes(self, table: str, column: str, value: str, handler: Optional[Handler], event: str = UPDATE) -> Subscription:
        return await self.subscribe(changes_channel(table, column, value), event, handler)

    async def publish_change(self, table: str, event: str, row: Dict[str, Any], columns: Iterable[str]) -> None:
        payload = {"table": table, "type": event, "new": row}
        for column in columns:
            value = row.get(column)
            if value is None:
                continue
            await self.publish(changes_channel(table, column, str(value)), event, payload)

    async def subscribe_presence(self, channel: str, handler: Optional[Handler]) -> Subscription:
        sub = await self.subscribe(presence_channel(channel), PRESENCE_SYNC, handler)
        # late joiners get the current snapshot straight away
        state = await self.presence_state(channel)
        await sub.dispatch({"keys": sorted(state)})
        return sub

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscriptions.get(channel, ()))

    async def publish(self, channel: str, event: str, payload: Any) -> None:
        raise NotImplementedError

    async def track(self, channel: str, key: str, meta: Optional[Dict[str, Any]] = None, ref: Optional[str] = None) -> str:
        """Add one presence entry under key and return its ref.

        A key stays in the presence set while any of its entries remains, so
        several sessions of the same user can come and go independently.
        """
        raise NotImplementedError

    async def untrack(self, channel: str, key: str, ref: Optional[str] = None) -> None:
        """Drop the entry ref of key, or every entry of key when ref is None."""
        raise NotImplementedError

    async def presence_state(self, channel: str) -> Dict[str, Dict[str, Any]]:
        raise NotImplementedError

    async def _attach(self, channel: str) -> None:
        return

    async def _detach(self, channel: str) -> None:
        return

    async def _deliver(self, channel: str, event: str, payload: Any) -> None:
        for sub in list(self._subscriptions.get(channel, ())):
            if not sub.matches(event):
                continue
            try:
                await sub.dispatch(payload)
            except Exception:
                logger.exception("Handler failed for %s/%s", channel, event)


class LocalBus(BaseBus):
    """In-process transport; payloads go through JSON like they would on the wire."""

    def __init__(self) -> None:
        super().__init__()
        # channel -> key -> ref -> meta
        self._presence: Dict[str, Dict[str, Dict[str, Dict[str, Any]]]] = defaultdict(dict)

    async def close(self) -> None:
        self._presence.clear()
        await super().close()

    async def publish(self, channel: str, event: str, payload: Any) -> None:
        data = json.loads(json.dumps(payload, default=str))
        await self._deliver(channel, event, data)

    async def track(self, channel: str, key: str, meta: Optional[Dict[str, Any]] = None, ref: Optional[str] = None) -> str:
        ref = ref or uuid.uuid4().hex
        self._presence[channel].setdefault(key, {})[ref] = dict(meta or {})
        await self._sync_presence(channel)
        return ref

    async def untrack(self, channel: str, key: str, ref: Optional[str] = None) -> None:
        entries = self._presence[channel].get(key)
        if not entries:
            return
        if ref is None:
            entries.clear()
        elif entries.pop(ref, None) is None:
            return
        if not entries:
            del self._presence[channel][key]
        await self._sync_presence(channel)

    async def presence_state(self, channel: str) -> Dict[str, Dict[str, Any]]:
        # one meta per key: the most recently tracked entry
        return {key: list(entries.values())[-1] for key, entries in self._presence.get(channel, {}).items() if entries}

    async def _sync_presence(self, channel: str) -> None:
        await self.publish(presence_channel(channel), PRESENCE_SYNC, {"keys": sorted(self._presence[channel])})


class RedisBus(BaseBus):

    def __init__(self, url: str, presence_ttl_seconds: int = 60, heartbeat_seconds: int = 30) -> None:
        super().__init__()
        self._url = url
        self._presence_ttl = presence_ttl_seconds
        self._heartbeat_seconds = heartbeat_seconds
        self._redis = None
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self._heartbeats: Dict[Tuple[str, str], asyncio.Task] = {}

    async def open(self) -> None:
        self._redis = redis.from_url(self._url, decode_responses=True)
        self._pubsub = self._redis.pubsub()
        await super().open()

    async def close(self) -> None:
        for task in self._heartbeats.values():
            task.cancel()
        self._heartbeats.clear()
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        if self._pubsub is not None:
            await self._pubsub.aclose()
            self._pubsub = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        await super().close()

    async def publish(self, channel: str, event: str, payload: Any) -> None:
        await self._redis.publish(channel, json.dumps({"event": event, "payload": payload}, default=str))

    async def _attach(self, channel: str) -> None:
        await self._pubsub.subscribe(channel)
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen())

    async def _detach(self, channel: str) -> None:
        try:
            await self._pubsub.unsubscribe(channel)
        except redis.RedisError:
            logger.warning("Failed to unsubscribe from %s", channel, exc_info=True)

    async def _listen(self) -> None:
        while True:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except redis.RedisError:
                logger.warning("Redis pubsub read failed", exc_info=True)
                await asyncio.sleep(0.5)
                continue
            if not msg or msg.get("type") != "message":
                continue
            try:
                envelope = json.loads(msg["data"])
            except (TypeError, ValueError):
                logger.warning("Dropping malformed frame on %s", msg.get("channel"))
                continue
            await self._deliver(msg["channel"], envelope.get("event"), envelope.get("payload"))

    def _members_key(self, channel: str) -> str:
        return f"presence:{channel}:members"

    def _meta_key(self, channel: str) -> str:
        return f"presence:{channel}:meta"

    async def track(self, channel: str, key: str, meta: Optional[Dict[str, Any]] = None, ref: Optional[str] = None) -> str:
        ref = ref or uuid.uuid4().hex
        entry = _presence_entry(key, ref)
        await self._redis.hset(self._meta_key(channel), entry, json.dumps(meta or {}))
        await self._touch(channel, entry)
        await self._sync_presence(channel)
        if (channel, entry) not in self._heartbeats:
            self._heartbeats[(channel, entry)] = asyncio.create_task(self._heartbeat(channel, entry))
        return ref

    async def untrack(self, channel: str, key: str, ref: Optional[str] = None) -> None:
        if ref is not None:
            entries = [_presence_entry(key, ref)]
        else:
            members = await self._redis.zrange(self._members_key(channel), 0, -1)
            entries = [entry for entry in members if _presence_key(entry) == key]
        if not entries:
            return
        for entry in entries:
            task = self._heartbeats.pop((channel, entry), None)
            if task is not None:
                task.cancel()
        await self._redis.zrem(self._members_key(channel), *entries)
        await self._redis.hdel(self._meta_key(channel), *entries)
        await self._sync_presence(channel)

    async def presence_state(self, channel: str) -> Dict[str, Dict[str, Any]]:
        members_key = self._members_key(channel)
        now = time.time()
        expired = await self._redis.zrangebyscore(members_key, "-inf", now)
        if expired:
            await self._redis.zrem(members_key, *expired)
            await self._redis.hdel(self._meta_key(channel), *expired)
        # ascending score, so the freshest entry of a key wins
        entries = await self._redis.zrange(members_key, 0, -1)
        if not entries:
            return {}
        metas = await self._redis.hmget(self._meta_key(channel), entries)
        state: Dict[str, Dict[str, Any]] = {}
        for entry, meta in zip(entries, metas):
            state[_presence_key(entry)] = json.loads(meta) if meta else {}
        return state

    async def _touch(self, channel: str, entry: str) -> None:
        await self._redis.zadd(self._members_key(channel), {entry: time.time() + self._presence_ttl})

    async def _heartbeat(self, channel: str, entry: str) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            try:
                await self._touch(channel, entry)
                # also surfaces members whose TTL lapsed since the last sync
                await self._sync_presence(channel)
            except redis.RedisError:
                logger.warning("Presence heartbeat failed for %s", entry, exc_info=True)

    async def _sync_presence(self, channel: str) -> None:
        state = await self.presence_state(channel)
        await self.publish(presence_channel(channel), PRESENCE_SYNC, {"keys": sorted(state)})


def create_bus(url: Optional[str] = None, presence_ttl_seconds: int = 60, heartbeat_seconds: int = 30) -> BaseBus:
    """Build an unopened transport; the caller owns open()/close()."""
    if not url:
        return LocalBus()
    return RedisBus(url, presence_ttl_seconds=presence_ttl_seconds, heartbeat_seconds=heartbeat_seconds)
