from __future__ import annotations

import logging
from urllib.parse import urlparse

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConnectionFailure

from app.core.config import settings

logger = logging.getLogger(__name__)


def extract_database_name_from_url(mongodb_url: str) -> str:
    """Extract database name from MongoDB URL"""
    try:
        database_name = urlparse(mongodb_url).path.lstrip("/")
        return database_name or settings.MONGODB_DATABASE
    except ValueError as e:
        logger.warning(f"Could not extract database name from URL: {e}. Using default.")
        return settings.MONGODB_DATABASE


def mask_mongodb_url(mongodb_url: str) -> str:
    """Hide the password part of a connection string"""
    if "@" not in mongodb_url:
        return mongodb_url
    credentials = mongodb_url.split("@", 1)[0].split("://")[-1]
    if ":" not in credentials:
        return mongodb_url
    user, _ = credentials.split(":", 1)
    return mongodb_url.replace(credentials, f"{user}:***", 1)


class Database:
    client: AsyncIOMotorClient | None = None
    database = None


db = Database()


async def get_database():
    """Get database instance"""
    return db.database


async def connect_to_mongo():
    """Create database connection and register document models"""
    try:
        # tz_aware so stored dates compare cleanly against datetime.now(UTC)
        db.client = AsyncIOMotorClient(settings.MONGODB_URL, tz_aware=True)
        db.database = db.client[extract_database_name_from_url(settings.MONGODB_URL)]

        await db.client.admin.command("ping")
        logger.info(f"Connected to MongoDB at {mask_mongodb_url(settings.MONGODB_URL)}")

        from app.models.addon import Addon
        from app.models.plan import Plan
        from app.models.subscription import Subscription
        from app.models.subscription_event import SubscriptionEvent

        await init_beanie(
            database=db.database,
            document_models=[Plan, Addon, Subscription, SubscriptionEvent],
        )
        logger.info("Initialized Beanie")

    except ConnectionFailure as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error connecting to MongoDB: {e}")
        raise


async def close_mongo_connection():
    """Close database connection"""
    if db.client:
        db.client.close()
        logger.info("Disconnected from MongoDB")
