import logging

from pymongo import MongoClient

from config_constants import MONGODB_URI, MONGODB_DB

logger = logging.getLogger(__name__)

client = MongoClient(MONGODB_URI)

# Test the connection
try:
    client.admin.command("ping")
    logger.info("Connected to MongoDB")
except Exception as e:
    logger.warning("MongoDB connection failed: %s", e)

# Select the database
db = client[MONGODB_DB]

# Collections
users_collection = db["users"]
