import logging
from typing import Optional

from starlette.requests import HTTPConnection
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chatsync import config


logger = logging.getLogger(__name__)


async def connect_to_mongo(url: Optional[str] = None, db_name: Optional[str] = None) -> AsyncIOMotorClient:
    client = AsyncIOMotorClient(url or config.MONGODB_URL, tz_aware=True, uuidRepresentation="standard")
    logger.info("Connected to MongoDB database %s", db_name or config.MONGODB_DB)
    return client


async def close_mongo_connection(client: Optional[AsyncIOMotorClient]) -> None:
    if client is not None:
        client.close()
        logger.info("MongoDB connection closed")


def get_database(client: AsyncIOMotorClient, db_name: Optional[str] = None) -> AsyncIOMotorDatabase:
    return client[db_name or config.MONGODB_DB]


def mongo_db_dependency(connection: HTTPConnection) -> AsyncIOMotorDatabase:
    # shared by http and websocket routes
    return connection.app.state.db
