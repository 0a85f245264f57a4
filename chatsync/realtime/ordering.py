import bisect
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel

from chatsync.schemas.conversation import ConversationListItem
from chatsync.schemas.message import Message, MessageStatus


TODAY = "Today"
YESTERDAY = "Yesterday"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        # the store hands back naive UTC unless tz_aware is on
        return value.replace(tzinfo=timezone.utc)
    return value


def activity_timestamp(item: ConversationListItem) -> float:
    ts = as_utc(item.last_message_at)
    return ts.timestamp() if ts is not None else 0.0


def sort_by_activity(items: Iterable[ConversationListItem]) -> List[ConversationListItem]:
    """Most recent activity first; sorted() is stable so ties keep their order."""
    return sorted(items, key=activity_timestamp, reverse=True)


def message_sort_key(message: Message):
    ts = as_utc(message.created_at)
    # undated messages sink to the end
    return (ts is None, ts or _EPOCH)


def index_of(messages: Sequence[Message], message_id: str) -> int:
    for i, message in enumerate(messages):
        if message.id == message_id:
            return i
    return -1


def insert_message(messages: List[Message], message: Message) -> bool:
    """Insert in created_at order; a message whose id is already present is ignored."""
    if index_of(messages, message.id) >= 0:
        return False
    keys = [message_sort_key(m) for m in messages]
    messages.insert(bisect.bisect_right(keys, message_sort_key(message)), message)
    return True


def merge_messages(messages: List[Message], incoming: Iterable[Message]) -> int:
    return sum(1 for message in incoming if insert_message(messages, message))


def apply_status(messages: List[Message], message_id: str, status: MessageStatus) -> bool:
    i = index_of(messages, message_id)
    if i < 0:
        return False
    current = messages[i]
    # read is terminal; a stale "sent" arriving late must not undo it
    if current.status == status or current.status == "read":
        return False
    messages[i] = current.model_copy(update={"status": status})
    return True


class DayGroup(BaseModel):

    label: str
    messages: List[Message]


def day_label(created_at: Optional[datetime], now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> str:
    ts = as_utc(created_at)
    if ts is None:
        return ""
    local = ts.astimezone(tz)
    today = (as_utc(now) or datetime.now(timezone.utc)).astimezone(tz).date()
    day = local.date()
    if day == today:
        return TODAY
    if day == today - timedelta(days=1):
        return YESTERDAY
    return f"{local:%A}, {local:%b} {local.day}"


def group_by_day(messages: Iterable[Message], now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> List[DayGroup]:
    """Bucket consecutive messages by calendar day in the viewer's timezone."""
    groups: List[DayGroup] = []
    for message in messages:
        label = day_label(message.created_at, now=now, tz=tz)
        if groups and groups[-1].label == label:
            groups[-1].messages.append(message)
        else:
            groups.append(DayGroup(label=label, messages=[message]))
    return groups
