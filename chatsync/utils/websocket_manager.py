import json
import logging
from typing import Any, Dict, List, Tuple

from fastapi import WebSocket

from chatsync.utils.realtime_bus import BaseBus, Subscription


logger = logging.getLogger(__name__)


class ConnectionManager:
    """Sockets per user plus the bus subscriptions each socket relays."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self._subscriptions: Dict[int, Dict[Tuple[str, str], Subscription]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        if user_id not in self.active_connections:
            self.active_connections[user_id] = []
        self.active_connections[user_id].append(websocket)
        self._subscriptions[id(websocket)] = {}
        logger.debug("Socket opened for %s", user_id)

    async def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        for sub in self._subscriptions.pop(id(websocket), {}).values():
            await sub.cancel()
        if user_id in self.active_connections:
            try:
                self.active_connections[user_id].remove(websocket)
            except ValueError:
                pass
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]
        logger.debug("Socket closed for %s", user_id)

    async def subscribe(self, websocket: WebSocket, bus: BaseBus, channel: str, event: str) -> None:
        subs = self._subscriptions.setdefault(id(websocket), {})
        if (channel, event) in subs:
            return

        async def relay(payload: Any) -> None:
            await websocket.send_text(json.dumps({"type": "event", "channel": channel, "event": event, "payload": payload}, default=str))

        subs[(channel, event)] = await bus.subscribe(channel, event, relay)

    async def unsubscribe(self, websocket: WebSocket, channel: str, event: str) -> None:
        sub = self._subscriptions.get(id(websocket), {}).pop((channel, event), None)
        if sub is not None:
            await sub.cancel()

