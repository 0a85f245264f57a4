import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from chatsync import config
from chatsync.errors import ChatError, StoreFailure
from chatsync.repositories.member_repository import MemberRepository
from chatsync.schemas.events import PRESENCE_SYNC
from chatsync.utils.dependencies import get_member_repository
from chatsync.utils.realtime_bus import presence_channel
from chatsync.utils.security import user_id_from_token
from chatsync.utils.websocket_manager import ConnectionManager


logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])
manager = ConnectionManager()


def _conversation_of(channel: str) -> Optional[str]:
    if channel.startswith("conversation:"):
        return channel.split(":", 1)[1] or None
    if channel.startswith("changes:messages:conversation_id=eq."):
        return channel.split("=eq.", 1)[1] or None
    return None


async def channel_allowed(channel: str, user_id: str, members: MemberRepository, publish: bool = False) -> bool:
    """Who may listen on or broadcast to a channel.

    Inboxes are readable by their owner only but anyone may drop an event in
    them; conversation channels and their change feeds need membership;
    change feeds are never written by clients.
    """
    if channel.startswith("user:") and channel.endswith(":inbox"):
        return publish or channel == f"user:{user_id}:inbox"
    if channel == presence_channel(config.PRESENCE_CHANNEL):
        return not publish
    conversation_id = _conversation_of(channel)
    if conversation_id is None:
        return False
    if publish and channel.startswith("changes:"):
        return False
    try:
        return await members.is_member(conversation_id, user_id)
    except StoreFailure:
        logger.warning("Membership check failed for %s", channel, exc_info=True)
        return False


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, members: MemberRepository = Depends(get_member_repository)):
    # JWT via query string: /ws?token=...
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user_id = user_id_from_token(token)
    except ChatError:
        await websocket.close(code=4401)
        return

    bus = websocket.app.state.bus
    presence_ref: Optional[str] = None

    await manager.connect(user_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except ValueError:
                await websocket.send_text(json.dumps({"type": "error", "error": "Invalid frame"}))
                continue
            kind = frame.get("type")
            ref = frame.get("ref")
            channel = frame.get("channel") or ""
            event = frame.get("event") or ""

            if kind == "track":
                # one entry per socket; tracking again refreshes it
                presence_ref = await bus.track(config.PRESENCE_CHANNEL, user_id, {"user_id": user_id}, ref=presence_ref)
            elif kind == "subscribe":
                if not event or not await channel_allowed(channel, user_id, members):
                    await websocket.send_text(json.dumps({"type": "error", "ref": ref, "error": "Channel not allowed"}))
                    continue
                await manager.subscribe(websocket, bus, channel, event)
                if channel == presence_channel(config.PRESENCE_CHANNEL):
                    state = await bus.presence_state(config.PRESENCE_CHANNEL)
                    snapshot = {"type": "event", "channel": channel, "event": PRESENCE_SYNC, "payload": {"keys": sorted(state)}}
                    await websocket.send_text(json.dumps(snapshot))
            elif kind == "unsubscribe":
                await manager.unsubscribe(websocket, channel, event)
            elif kind == "broadcast":
                if not event or not await channel_allowed(channel, user_id, members, publish=True):
                    await websocket.send_text(json.dumps({"type": "error", "ref": ref, "error": "Channel not allowed"}))
                    continue
                await bus.publish(channel, event, frame.get("payload"))
            else:
                await websocket.send_text(json.dumps({"type": "error", "ref": ref, "error": "Unknown frame type"}))
                continue
            await websocket.send_text(json.dumps({"type": "ok", "ref": ref}))
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(user_id, websocket)
        if presence_ref is not None:
            await bus.untrack(config.PRESENCE_CHANNEL, user_id, presence_ref)
