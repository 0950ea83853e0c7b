"""
MongoDB connection for Conevent

The client is created once per process and shared by every request handler.
pymongo connects lazily, so importing this module never touches the network.
"""
import logging

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import settings
from errors import NotFound

logger = logging.getLogger(__name__)

client = MongoClient(settings.DATABASE_URL, tz_aware=True)
db = client[settings.DATABASE_NAME]


def get_db() -> Database:
    """FastAPI dependency returning the process-wide database handle."""
    return db


def ensure_indexes(database: Database) -> None:
    """Create the indexes the uniqueness invariants rely on."""
    database["account"].create_index([("email", ASCENDING)], unique=True)
    database["account"].create_index([("role", ASCENDING)])
    database["account"].create_index([("interests", ASCENDING)])

    database["event"].create_index([("owner_id", ASCENDING)])
    database["event"].create_index([("date", ASCENDING)])

    # One application per (student, event)
    database["application"].create_index(
        [("student_id", ASCENDING), ("event_id", ASCENDING)], unique=True
    )

    database["notification"].create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
    database["notification"].create_index([("recipient_id", ASCENDING), ("read", ASCENDING)])
    logger.info("MongoDB indexes ensured on %s", database.name)


def object_id(value, resource: str = "Resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise NotFound(f"{resource} not found")


def to_public(doc: dict) -> dict:
    """Convert a stored document into its JSON-safe public form."""
    if not doc:
        return doc
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        elif isinstance(value, ObjectId):
            out[key] = str(value)
        elif isinstance(value, list):
            out[key] = [str(v) if isinstance(v, ObjectId) else v for v in value]
        else:
            out[key] = value
    return out
