from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from price_tracker.config import Settings

PRODUCTS_COLLECTION = "product_details"
CATEGORIES_COLLECTION = "product_categories"


def get_client(settings: Settings) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(settings.MONGO_URI, tz_aware=True)


def get_database(client: AsyncIOMotorClient, settings: Settings) -> AsyncIOMotorDatabase:
    return client[settings.MONGO_DB]
