import motor.motor_asyncio
from pymongo import ASCENDING, DESCENDING

from app.utils.config import get_settings
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

settings = get_settings()

logger.info(f"Initializing MongoDB connection to database: {settings.db_name}")

# Motor connects lazily, so this never blocks import
try:
    client = motor.motor_asyncio.AsyncIOMotorClient(settings.mongo_details)
    db = client[settings.db_name]
    logger.info("MongoDB client initialized successfully")
except Exception as e:
    logger.error(f"Failed to initialize MongoDB client: {e}")
    raise

# Collections
chat_history_coll = db["chat_history"]


async def init_indexes():
    """Index initialization for collections."""
    logger.info("Starting database index initialization")

    try:
        await chat_history_coll.create_index(
            [("conversation_id", ASCENDING), ("timestamp", DESCENDING)]
        )
        logger.debug("Created index on chat_history.(conversation_id, timestamp)")
    except Exception as e:
        if "already exists" in str(e).lower():
            logger.debug("Index on chat_history.(conversation_id, timestamp) already exists")
        else:
            logger.warning(f"Could not create index on chat_history: {e}")
            logger.info("Application will continue without all indexes - some operations may be slower")
            return

    logger.info("Database index initialization completed successfully")
