import asyncio
import copy
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from chatsync.errors import DuplicateKey, StoreFailure
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_directory import ConversationDirectory
from chatsync.services.conversation_resolver import ConversationResolver
from chatsync.services.user_service import UserService


class FakeStore:
    """In-memory collections shared by the fake repositories.

    Every repository call yields to the event loop once so concurrent callers
    interleave the way they would against a real database.
    """

    def __init__(self) -> None:
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.members: List[Dict[str, Any]] = []
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.fail_on: set = set()
        self.calls: Dict[str, int] = {}
        self._clock = datetime.now(timezone.utc) - timedelta(minutes=5)
        self._next_id = 0

    def now(self) -> datetime:
        self._clock += timedelta(milliseconds=1)
        return self._clock

    def new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    async def enter(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        await asyncio.sleep(0)
        if name in self.fail_on:
            raise StoreFailure(f"{name} failed")

    def add_profile(self, user_id: str, username: Optional[str] = None, full_name: Optional[str] = None, avatar_url: Optional[str] = None) -> None:
        self.profiles[user_id] = {"_id": user_id, "username": username, "full_name": full_name, "avatar_url": avatar_url, "status": None}

    def seed_conversation(self, conversation_id: str, member_ids: List[str], is_group: bool = False, name: Optional[str] = None, last_message_at: Optional[datetime] = None) -> None:
        at = last_message_at or self.now()
        doc = {"_id": conversation_id, "is_group": is_group, "name": name, "group_image": None, "created_at": at, "last_message_at": at}
        if not is_group:
            doc["direct_key"] = ":".join(sorted(member_ids))
        self.conversations[conversation_id] = doc
        for uid in member_ids:
            self.members.append({"conversation_id": conversation_id, "user_id": uid, "joined_at": at})

    def seed_message(self, conversation_id: str, sender_id: str, content: str, created_at: Optional[datetime] = None, status: str = "sent", message_id: Optional[str] = None) -> str:
        mid = message_id or self.new_id("msg")
        self.messages[mid] = {
            "_id": mid,
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "type": "text",
            "file_path": None,
            "created_at": created_at or self.now(),
            "is_edited": False,
            "status": status,
        }
        return mid


class FakeConversationRepository:

    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def ensure_indexes(self) -> None:
        return

    async def create(self, conversation_id, is_group, name=None, group_image=None, key=None):
        await self.store.enter("create_conversation")
        if key is not None and any(c.get("direct_key") == key for c in self.store.conversations.values()):
            raise DuplicateKey("direct_key")
        now = self.store.now()
        doc = {"_id": conversation_id, "is_group": is_group, "name": name, "group_image": group_image, "created_at": now, "last_message_at": now}
        if key is not None:
            doc["direct_key"] = key
        self.store.conversations[conversation_id] = doc
        return copy.deepcopy(doc)

    async def get(self, conversation_id):
        await self.store.enter("get_conversation")
        doc = self.store.conversations.get(conversation_id)
        return copy.deepcopy(doc) if doc else None

    async def get_many(self, conversation_ids):
        await self.store.enter("get_conversations")
        docs = [copy.deepcopy(self.store.conversations[cid]) for cid in conversation_ids if cid in self.store.conversations]
        return sorted(docs, key=lambda d: d["last_message_at"], reverse=True)

    async def find_direct(self, conversation_ids):
        await self.store.enter("find_direct")
        for cid in conversation_ids:
            doc = self.store.conversations.get(cid)
            if doc and not doc["is_group"]:
                return copy.deepcopy(doc)
        return None

    async def find_by_direct_key(self, key):
        await self.store.enter("find_by_direct_key")
        for doc in self.store.conversations.values():
            if doc.get("direct_key") == key:
                return copy.deepcopy(doc)
        return None

    async def touch(self, conversation_id, at=None):
        await self.store.enter("touch")
        if conversation_id in self.store.conversations:
            self.store.conversations[conversation_id]["last_message_at"] = at or self.store.now()

    async def delete(self, conversation_id):
        await self.store.enter("delete_conversation")
        self.store.conversations.pop(conversation_id, None)


class FakeMemberRepository:

    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def ensure_indexes(self) -> None:
        return

    def _insert(self, conversation_id, user_id):
        if any(m["conversation_id"] == conversation_id and m["user_id"] == user_id for m in self.store.members):
            raise DuplicateKey("member")
        self.store.members.append({"conversation_id": conversation_id, "user_id": user_id, "joined_at": self.store.now()})

    async def add_member(self, conversation_id, user_id):
        await self.store.enter("add_member")
        self._insert(conversation_id, user_id)

    async def add_members(self, conversation_id, user_ids):
        await self.store.enter("add_members")
        for uid in user_ids:
            self._insert(conversation_id, uid)

    async def conversation_ids_for_user(self, user_id):
        await self.store.enter("conversation_ids_for_user")
        ids = []
        for m in self.store.members:
            if m["user_id"] == user_id and m["conversation_id"] not in ids:
                ids.append(m["conversation_id"])
        return ids

    async def conversations_with_member(self, conversation_ids, user_id):
        await self.store.enter("conversations_with_member")
        return [cid for cid in conversation_ids if any(m["conversation_id"] == cid and m["user_id"] == user_id for m in self.store.members)]

    async def members_for_conversations(self, conversation_ids):
        await self.store.enter("members_for_conversations")
        return [copy.deepcopy(m) for m in self.store.members if m["conversation_id"] in conversation_ids]

    async def member_ids(self, conversation_id):
        await self.store.enter("member_ids")
        return [m["user_id"] for m in self.store.members if m["conversation_id"] == conversation_id]

    async def is_member(self, conversation_id, user_id):
        await self.store.enter("is_member")
        return any(m["conversation_id"] == conversation_id and m["user_id"] == user_id for m in self.store.members)

    async def delete_for_conversation(self, conversation_id):
        await self.store.enter("delete_members")
        self.store.members = [m for m in self.store.members if m["conversation_id"] != conversation_id]


class FakeMessageRepository:

    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def ensure_indexes(self) -> None:
        return

    async def insert(self, conversation_id, sender_id, content, type="text", file_path=None):
        await self.store.enter("insert_message")
        mid = self.store.seed_message(conversation_id, sender_id, content)
        self.store.messages[mid].update({"type": type, "file_path": file_path})
        return copy.deepcopy(self.store.messages[mid])

    async def list_for_conversation(self, conversation_id, limit=None):
        await self.store.enter("list_messages")
        docs = [copy.deepcopy(m) for m in self.store.messages.values() if m["conversation_id"] == conversation_id]
        docs.sort(key=lambda d: (d["created_at"], d["_id"]))
        return docs[:limit] if limit else docs

    async def latest_for_conversations(self, conversation_ids):
        await self.store.enter("latest_messages")
        latest: Dict[str, Dict[str, Any]] = {}
        for m in self.store.messages.values():
            cid = m["conversation_id"]
            if cid in conversation_ids and (cid not in latest or m["created_at"] > latest[cid]["created_at"]):
                latest[cid] = {"_id": cid, "content": m["content"], "created_at": m["created_at"]}
        return latest

    async def unread_inbound_ids(self, conversation_id, reader_id):
        await self.store.enter("unread_inbound_ids")
        return [
            m["_id"]
            for m in self.store.messages.values()
            if m["conversation_id"] == conversation_id and m["sender_id"] != reader_id and m["status"] != "read"
        ]

    async def mark_read(self, message_ids):
        await self.store.enter("mark_read")
        count = 0
        for mid in message_ids:
            doc = self.store.messages.get(mid)
            if doc and doc["status"] != "read":
                doc["status"] = "read"
                count += 1
        return count


class FakeUserRepository:

    def __init__(self, store: FakeStore) -> None:
        self.store = store

    async def get_profile(self, user_id):
        await self.store.enter("get_profile")
        doc = self.store.profiles.get(user_id)
        return copy.deepcopy(doc) if doc else None

    async def get_profiles(self, user_ids):
        await self.store.enter("get_profiles")
        return {uid: copy.deepcopy(self.store.profiles[uid]) for uid in user_ids if uid in self.store.profiles}

    async def search(self, term, exclude_id, limit=10):
        await self.store.enter("search_profiles")
        pattern = re.compile(re.escape(term), re.IGNORECASE)
        found = [
            copy.deepcopy(p)
            for p in self.store.profiles.values()
            if p["_id"] != exclude_id and any(pattern.search(p.get(f) or "") for f in ("username", "full_name"))
        ]
        return found[:limit]


class Services:

    def __init__(self, store: FakeStore, bus=None) -> None:
        self.store = store
        self.conversations = FakeConversationRepository(store)
        self.members = FakeMemberRepository(store)
        self.messages = FakeMessageRepository(store)
        self.users = FakeUserRepository(store)
        self.resolver = ConversationResolver(self.conversations, self.members)
        self.directory = ConversationDirectory(self.conversations, self.members, self.messages, self.users)
        self.chat = ChatService(self.messages, self.conversations, self.members, self.resolver, bus=bus)
        self.user_service = UserService(self.users)
