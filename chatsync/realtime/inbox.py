import logging
from typing import List, Optional, Set

from chatsync.errors import ChatError
from chatsync.realtime import ordering
from chatsync.schemas.conversation import ConversationListItem
from chatsync.schemas.events import (
    MESSAGE_UPDATE,
    NEW_CONVERSATION,
    MessageUpdateEvent,
    NewConversationEvent,
    inbox_channel,
)
from chatsync.utils.realtime_bus import BaseBus, Subscription


logger = logging.getLogger(__name__)


class LiveConversationList:
    """A user's conversation list kept current from their personal inbox channel."""

    def __init__(self, bus: BaseBus, directory, user_id: str) -> None:
        self._bus = bus
        self._directory = directory
        self.user_id = user_id
        self._items: List[ConversationListItem] = []
        self._ids: Set[str] = set()
        self._fetching: Set[str] = set()
        self._subscriptions: List[Subscription] = []
        self.closed = False

    @property
    def items(self) -> List[ConversationListItem]:
        return list(self._items)

    def get(self, conversation_id: str) -> Optional[ConversationListItem]:
        for item in self._items:
            if item.id == conversation_id:
                return item
        return None

    async def open(self, initial: Optional[List[ConversationListItem]] = None) -> None:
        if initial is None:
            initial = await self._directory.list(self.user_id)
        self.reset(initial)
        channel = inbox_channel(self.user_id)
        self._subscriptions.append(await self._bus.subscribe(channel, NEW_CONVERSATION, self._on_new_conversation))
        self._subscriptions.append(await self._bus.subscribe(channel, MESSAGE_UPDATE, self._on_message_update))

    async def close(self) -> None:
        self.closed = True
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            await sub.cancel()

    def reset(self, items: List[ConversationListItem]) -> None:
        self._items = ordering.sort_by_activity(items)
        self._ids = {item.id for item in self._items}

    async def _on_new_conversation(self, payload: dict) -> None:
        event = NewConversationEvent.model_validate(payload)
        cid = event.conversation_id
        if cid in self._ids or cid in self._fetching:
            return

        self._fetching.add(cid)
        try:
            item = await self._directory.get_by_id(self.user_id, cid)
        except ChatError as exc:
            logger.warning("Could not load new conversation %s: %s", cid, exc.message)
            return
        finally:
            self._fetching.discard(cid)

        if self.closed or cid in self._ids:
            return
        item = item.model_copy(
            update={
                "last_message": event.last_message if event.last_message is not None else item.last_message,
                "last_message_at": event.last_message_at or item.last_message_at,
            }
        )
        self._ids.add(cid)
        self._items = ordering.sort_by_activity([item] + self._items)

    def _on_message_update(self, payload: dict) -> None:
        event = MessageUpdateEvent.model_validate(payload)
        if self.closed or event.conversation_id not in self._ids:
            return
        updated = []
        for item in self._items:
            if item.id == event.conversation_id and not _is_older(event, item):
                item = item.model_copy(update={"last_message": event.content, "last_message_at": event.created_at or item.last_message_at})
            updated.append(item)
        self._items = ordering.sort_by_activity(updated)


def _is_older(event: MessageUpdateEvent, item: ConversationListItem) -> bool:
    # late deliveries of older messages must not roll the preview back
    new_ts = ordering.as_utc(event.created_at)
    current_ts = ordering.as_utc(item.last_message_at)
    if new_ts is None or current_ts is None:
        return False
    return new_ts < current_ts
