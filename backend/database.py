from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument

from config import MONGO_URL, DB_NAME, TRAINING_MODE, MONGO_TRANSACTIONS

logger = logging.getLogger(__name__)

# Use separate database for training
if TRAINING_MODE:
    ACTIVE_DB_NAME = f"{DB_NAME}_training"
else:
    ACTIVE_DB_NAME = DB_NAME

client = AsyncIOMotorClient(MONGO_URL)
db = client[ACTIVE_DB_NAME]

logger.info(f"[Database] Using: {ACTIVE_DB_NAME} {'(TRAINING MODE)' if TRAINING_MODE else '(PRODUCTION)'}")


def get_db():
    """FastAPI dependency returning the active database"""
    return db


@asynccontextmanager
async def transaction(database=None):
    """Yield a session bound to a multi-document transaction, or None.

    Transactions are only available on replica sets, so they are opt-in through
    MONGO_TRANSACTIONS. Callers pass the yielded value as session= on every write.
    """
    if not MONGO_TRANSACTIONS:
        yield None
        return

    target = database if database is not None else db
    async with await target.client.start_session() as session:
        async with session.start_transaction():
            yield session


async def next_sequence(database, name: str) -> int:
    """Atomically increment and return the named counter in app_config"""
    counter = await database.app_config.find_one_and_update(
        {"_id": name},
        {
            "$inc": {"last_number": 1},
            "$set": {"updated_at": datetime.now(timezone.utc).isoformat()}
        },
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    return counter["last_number"]


async def create_indexes(database=None):
    """Create database indexes for optimized query performance"""
    target = database if database is not None else db
    try:
        # orders indexes
        await target.orders.create_index("order_id", unique=True)
        await target.orders.create_index("order_number", unique=True)
        await target.orders.create_index("order_seq")
        await target.orders.create_index("status")
        await target.orders.create_index("order_type")
        await target.orders.create_index("client_id")
        await target.orders.create_index("created_at")

        # legacy per-order chat
        await target.order_messages.create_index([("order_id", 1), ("created_at", 1)])

        # conversations / messages
        await target.conversations.create_index("conversation_id", unique=True)
        await target.conversations.create_index([("admin_id", 1), ("status", 1), ("updated_at", -1)])
        await target.conversations.create_index("client_id")
        await target.messages.create_index("message_id", unique=True)
        await target.messages.create_index([("conversation_id", 1), ("created_at", 1)])

        # notifications
        await target.notifications.create_index("notification_id", unique=True)
        await target.notifications.create_index([("recipient_id", 1), ("created_at", -1)])
        await target.notifications.create_index([("status", 1), ("scheduled_for", 1)])
        await target.notifications.create_index("created_at")
        await target.notification_preferences.create_index("user_id", unique=True)

        # shop
        await target.shop_products.create_index("product_id", unique=True)
        await target.shop_orders.create_index("shop_order_id", unique=True)
        await target.shop_orders.create_index("status")

        # users
        await target.users.create_index("user_id", unique=True)
        await target.user_sessions.create_index("session_token")

        logger.info("[Database] Indexes created successfully")
    except Exception as e:
        logger.error(f"[Database] Index creation error (may already exist): {e}")
