import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from quizsync.config import get_settings
from quizsync.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

client: Optional[AsyncIOMotorClient] = None


async def connect_db():
    global client
    settings = get_settings()
    client = AsyncIOMotorClient(settings.mongo_connection_string)
    await client.server_info()
    logger.info("Database Connected")


async def close_db():
    global client
    if client:
        client.close()
        client = None
        logger.info("Database Disconnected")


def get_database() -> AsyncIOMotorDatabase:
    if client is None:
        raise StoreUnavailable("Database connection not available.")
    return client[get_settings().mongo_database]
