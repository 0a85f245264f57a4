import asyncio
import logging
from typing import List, Optional, Set

from pydantic import BaseModel

from chatsync.errors import ChatError
from chatsync.realtime.message_sync import MessageSynchronizer
from chatsync.schemas.message import Message


logger = logging.getLogger(__name__)


class MarkReadOutcome(BaseModel):

    success: bool = True
    updated_count: int = 0
    # True when nothing was written: group view, nothing unread, or a call already in flight
    skipped: bool = False
    error: Optional[str] = None
    code: Optional[str] = None


class ReadReceiptCoordinator:
    """Marks inbound messages of an open direct conversation as read.

    At most one mark_read call runs per view; a call made while another is in
    flight returns immediately instead of queueing a second write.
    """

    def __init__(self, chat_service, synchronizer: MessageSynchronizer, is_group: bool = False) -> None:
        self._chat_service = chat_service
        self._synchronizer = synchronizer
        self.is_group = is_group
        self._in_flight = False
        self._tasks: Set[asyncio.Task] = set()
        self._attached = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def unread_inbound_ids(self, messages: Optional[List[Message]] = None) -> List[str]:
        viewer = self._synchronizer.current_user_id
        if messages is None:
            messages = self._synchronizer.messages
        return [m.id for m in messages if m.sender_id != viewer and m.status != "read" and m.delivery == "confirmed"]

    async def mark_read(self, conversation_id: Optional[str] = None) -> MarkReadOutcome:
        cid = self._synchronizer.conversation_id
        # another conversation's unread ids are not in this view
        if conversation_id and conversation_id != cid:
            return MarkReadOutcome(skipped=True)
        if self.is_group or not cid or self._in_flight:
            return MarkReadOutcome(skipped=True)
        unread = self.unread_inbound_ids()
        if not unread:
            return MarkReadOutcome(skipped=True)

        self._in_flight = True
        try:
            result = await self._chat_service.mark_messages_read(self._synchronizer.current_user_id, cid)
        except ChatError as exc:
            logger.warning("mark_read failed for conversation %s: %s", cid, exc.message)
            return MarkReadOutcome(success=False, error=exc.message, code=exc.code)
        finally:
            self._in_flight = False

        for message_id in unread:
            self._synchronizer.apply_status(message_id, "read")
        return MarkReadOutcome(updated_count=result.updated_count)

    def attach(self) -> None:
        """Mark read automatically whenever the view gains unread inbound messages."""
        if not self._attached:
            self._synchronizer.add_listener(self._on_messages)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self._synchronizer.remove_listener(self._on_messages)
            self._attached = False

    def _on_messages(self, messages: List[Message]) -> None:
        if self.is_group or self._in_flight or not self.unread_inbound_ids(messages):
            return
        task = asyncio.get_running_loop().create_task(self.mark_read())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
