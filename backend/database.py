from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from config import config

# MongoDB connection
client = AsyncIOMotorClient(config.MONGO_URL)
db = client[config.DB_NAME]


def get_db() -> AsyncIOMotorDatabase:
    """Database dependency; overridden in tests"""
    return db
