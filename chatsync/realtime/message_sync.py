import logging
from datetime import datetime, tzinfo
from typing import Callable, List, Optional

from pydantic import BaseModel

from chatsync.errors import ChatError
from chatsync.realtime import ordering
from chatsync.schemas.events import (
    MESSAGE_UPDATE,
    NEW_CONVERSATION,
    NEW_MESSAGE,
    ChangeEvent,
    MessageUpdateEvent,
    NewConversationEvent,
    conversation_channel,
    inbox_channel,
)
from chatsync.schemas.message import DeliveryState, Message, MessageStatus, MessageType, SendMessageRequest
from chatsync.utils.realtime_bus import BaseBus, Subscription


logger = logging.getLogger(__name__)


class SendOutcome(BaseModel):

    success: bool
    message: Optional[Message] = None
    conversation_id: Optional[str] = None
    created_conversation: bool = False
    error: Optional[str] = None
    code: Optional[str] = None


class MessageSynchronizer:
    """Live, deduplicated, created_at-ordered view of one conversation.

    Four sources feed the view: the initial snapshot, optimistic local sends,
    ``new-message`` broadcasts on the conversation channel, and row change
    notifications carrying status updates. Every source is idempotent, so
    duplicate or reordered deliveries converge on the same list.

    A view opened for a peer without a conversation yet (``conversation_id``
    None, ``target_user_id`` set) binds its subscriptions once the first send
    has created the conversation.
    """

    def __init__(
        self,
        bus: BaseBus,
        chat_service,
        current_user_id: str,
        conversation_id: Optional[str] = None,
        target_user_id: Optional[str] = None,
    ) -> None:
        self._bus = bus
        self._chat_service = chat_service
        self.current_user_id = current_user_id
        self._conversation_id = conversation_id
        self.target_user_id = target_user_id
        self._messages: List[Message] = []
        self._subscriptions: List[Subscription] = []
        self._listeners: List[Callable[[List[Message]], None]] = []
        self.closed = False

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        i = ordering.index_of(self._messages, message_id)
        return self._messages[i] if i >= 0 else None

    def add_listener(self, listener: Callable[[List[Message]], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[List[Message]], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def grouped(self, now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> List[ordering.DayGroup]:
        return ordering.group_by_day(self._messages, now=now, tz=tz)

    async def open(self, snapshot: Optional[List[Message]] = None) -> None:
        if snapshot is None and self._conversation_id:
            snapshot = await self._chat_service.get_messages(self.current_user_id, self._conversation_id)
        if self.closed:
            return
        self.load_snapshot(snapshot or [])
        await self._bind()

    async def close(self) -> None:
        self.closed = True
        self._listeners.clear()
        await self._unbind()

    def load_snapshot(self, snapshot: List[Message]) -> None:
        if ordering.merge_messages(self._messages, snapshot):
            self._notify()

    def insert(self, message: Message) -> bool:
        if self.closed:
            return False
        added = ordering.insert_message(self._messages, message)
        if added:
            self._notify()
        return added

    def apply_status(self, message_id: str, status: MessageStatus) -> bool:
        if self.closed or not message_id:
            return False
        changed = ordering.apply_status(self._messages, message_id, status)
        if changed:
            self._notify()
        return changed

    async def send(
        self,
        content: Optional[str],
        type: MessageType = "text",
        file_path: Optional[str] = None,
    ) -> SendOutcome:
        text = (content or "").strip() or None
        if text is None and not file_path:
            return SendOutcome(success=False, error="Message cannot be empty", code="invalid_argument")

        optimistic = Message.optimistic(self._conversation_id or "", self.current_user_id, text, type=type, file_path=file_path)
        self.insert(optimistic)

        is_new = self._conversation_id is None
        request = SendMessageRequest(
            conversation_id=self._conversation_id,
            target_user_id=self.target_user_id if is_new else None,
            content=text or "",
            type=type,
            file_path=file_path,
        )
        try:
            result = await self._chat_service.send_message(self.current_user_id, request)
        except ChatError as exc:
            logger.warning("Send failed in conversation %s: %s", self._conversation_id, exc.message)
            failed = self._set_delivery(optimistic.id, "failed")
            return SendOutcome(success=False, message=failed or optimistic, error=exc.message, code=exc.code)

        if self.closed:
            return SendOutcome(success=True, conversation_id=result.conversation_id, created_conversation=result.created_conversation)

        confirmed = self._confirm(optimistic, result.message_id, result.conversation_id)
        if self._conversation_id != result.conversation_id:
            await self._rebind(result.conversation_id)

        cid = result.conversation_id
        await self._bus.publish(conversation_channel(cid), NEW_MESSAGE, confirmed.model_dump(mode="json"))

        recipients = [self.current_user_id]
        for member_id in result.member_ids or [self.target_user_id]:
            if member_id and member_id not in recipients:
                recipients.append(member_id)

        update = MessageUpdateEvent(conversation_id=cid, content=text, created_at=confirmed.created_at).model_dump(mode="json")
        for member_id in recipients:
            await self._bus.publish(inbox_channel(member_id), MESSAGE_UPDATE, update)
        if result.created_conversation:
            event = NewConversationEvent(conversation_id=cid, last_message=text, last_message_at=confirmed.created_at).model_dump(mode="json")
            for member_id in recipients[1:]:
                await self._bus.publish(inbox_channel(member_id), NEW_CONVERSATION, event)

        return SendOutcome(
            success=True,
            message=confirmed,
            conversation_id=cid,
            created_conversation=result.created_conversation,
        )

    def _confirm(self, optimistic: Message, message_id: str, conversation_id: str) -> Message:
        i = ordering.index_of(self._messages, optimistic.id)
        existing = ordering.index_of(self._messages, message_id)
        if existing >= 0:
            # server copy got here first through a broadcast
            if i >= 0 and i != existing:
                del self._messages[i]
                self._notify()
            return self._messages[ordering.index_of(self._messages, message_id)]
        update = {"id": message_id, "conversation_id": conversation_id, "delivery": "confirmed"}
        if i < 0:
            confirmed = optimistic.model_copy(update=update)
            ordering.insert_message(self._messages, confirmed)
        else:
            confirmed = self._messages[i].model_copy(update=update)
            self._messages[i] = confirmed
        self._notify()
        return confirmed

    def _set_delivery(self, message_id: str, delivery: DeliveryState) -> Optional[Message]:
        if self.closed:
            return None
        i = ordering.index_of(self._messages, message_id)
        if i < 0:
            return None
        self._messages[i] = self._messages[i].model_copy(update={"delivery": delivery})
        self._notify()
        return self._messages[i]

    async def _bind(self) -> None:
        cid = self._conversation_id
        if not cid or self._subscriptions:
            return
        self._subscriptions.append(await self._bus.subscribe(conversation_channel(cid), NEW_MESSAGE, self._on_broadcast))
        self._subscriptions.append(await self._bus.subscribe_changes("messages", "conversation_id", cid, self._on_change))

    async def _unbind(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            await sub.cancel()

    async def _rebind(self, conversation_id: str) -> None:
        await self._unbind()
        self._conversation_id = conversation_id
        await self._bind()

    def _on_broadcast(self, payload: dict) -> None:
        message = Message.model_validate(payload).model_copy(update={"delivery": "confirmed"})
        if message.conversation_id != self._conversation_id:
            return
        self.insert(message)

    def _on_change(self, payload: dict) -> None:
        row = ChangeEvent.model_validate(payload).new
        message_id = row.get("id") or row.get("_id")
        status: MessageStatus = "read" if row.get("status") == "read" else "sent"
        self.apply_status(message_id, status)

    def _notify(self) -> None:
        snapshot = self.messages
        for listener in list(self._listeners):
            listener(snapshot)
