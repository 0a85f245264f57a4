import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatsync import config
from chatsync.database.connection import close_mongo_connection, connect_to_mongo, get_database
from chatsync.errors import ChatError
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.member_repository import MemberRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.routers.attachments import router as attachments_router
from chatsync.routers.conversations import router as conversations_router
from chatsync.routers.messages import router as messages_router
from chatsync.routers.presence import router as presence_router
from chatsync.routers.realtime import router as realtime_router
from chatsync.routers.users import router as users_router
from chatsync.utils.realtime_bus import create_bus


logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    client = await connect_to_mongo()
    db = get_database(client)
    for repo in (ConversationRepository(db), MemberRepository(db), MessageRepository(db)):
        await repo.ensure_indexes()

    bus = create_bus(
        config.REDIS_URL,
        presence_ttl_seconds=config.PRESENCE_TTL_SECONDS,
        heartbeat_seconds=config.PRESENCE_HEARTBEAT_SECONDS,
    )
    await bus.open()
    logger.info("Realtime bus %s opened", type(bus).__name__)

    app.state.db = db
    app.state.bus = bus
    try:
        yield
    finally:
        await bus.close()
        await close_mongo_connection(client)


async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message, "code": exc.code})


def create_app(lifespan=lifespan) -> FastAPI:

    app = FastAPI(title="chatsync", lifespan=lifespan)
    app.add_exception_handler(ChatError, chat_error_handler)

    app.include_router(conversations_router)
    app.include_router(messages_router)
    app.include_router(presence_router)
    app.include_router(users_router)
    app.include_router(attachments_router)
    app.include_router(realtime_router)

    @app.get("/")
    async def root():

        return {"message": "chatsync is running"}

    return app


app = create_app()
