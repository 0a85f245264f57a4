from fastapi import APIRouter, Depends

from chatsync import config
from chatsync.utils.dependencies import get_bus, get_current_user_id
from chatsync.utils.realtime_bus import BaseBus


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("")
async def online_users(current_user_id: str = Depends(get_current_user_id), bus: BaseBus = Depends(get_bus)):
    state = await bus.presence_state(config.PRESENCE_CHANNEL)
    return {"online": sorted(state)}


@router.get("/{user_id}")
async def presence(user_id: str, current_user_id: str = Depends(get_current_user_id), bus: BaseBus = Depends(get_bus)):
    """
    Online status from the shared presence channel. Staleness is handled by the
    transport (heartbeat TTL on Redis, explicit untrack in-process).
    """
    state = await bus.presence_state(config.PRESENCE_CHANNEL)
    return {"user_id": user_id, "online": user_id in state}
