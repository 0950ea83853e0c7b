"""
University events.

Only university accounts create events, and only the owning university may
change or remove one. Creating an event fans out a notification to every
student following the owner.
"""
import logging
import math

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from database import object_id
from errors import Forbidden, NotFound, ValidationFailed
from schemas import MAX_EVENT_MEDIA, Event, utcnow

logger = logging.getLogger(__name__)

EDITABLE_EVENT_FIELDS = ("title", "description", "date", "location", "media")


def _check_media(media) -> None:
    if media is not None and len(media) > MAX_EVENT_MEDIA:
        raise ValidationFailed(f"Too many media items. Maximum {MAX_EVENT_MEDIA} allowed.")


def create_event(db: Database, owner: dict, fields: dict) -> dict:
    if owner["role"] != "university":
        raise Forbidden("Only universities can create events")
    _check_media(fields.get("media"))
    try:
        doc = Event(owner_id=owner["_id"], **fields).model_dump()
    except ValidationError as e:
        raise ValidationFailed("Invalid input data. " + ". ".join(err["msg"] for err in e.errors()))
    doc["_id"] = db["event"].insert_one(doc).inserted_id
    logger.info("Event %s created by %s", doc["_id"], owner["_id"])
    return doc


def get_event(db: Database, event_id) -> dict:
    event = db["event"].find_one({"_id": object_id(event_id, "Event")})
    if event is None:
        raise NotFound("Event not found")
    return event


def get_owned_event(db: Database, owner: dict, event_id) -> dict:
    event = get_event(db, event_id)
    if event["owner_id"] != owner["_id"]:
        raise Forbidden("You can only manage your own events")
    return event


def list_events(db: Database, page: int = 1, limit: int = 20, owner_id=None):
    query = {}
    if owner_id is not None:
        query["owner_id"] = object_id(owner_id, "University")
    total = db["event"].count_documents(query)
    cursor = db["event"].find(query).sort("date", 1).skip((page - 1) * limit).limit(limit)
    pagination = {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0}
    return list(cursor), pagination


def update_event(db: Database, owner: dict, event_id, fields: dict) -> dict:
    event = get_owned_event(db, owner, event_id)
    update = {k: v for k, v in fields.items() if k in EDITABLE_EVENT_FIELDS and v is not None}
    _check_media(update.get("media"))
    if not update:
        return event
    update["updated_at"] = utcnow()
    return db["event"].find_one_and_update(
        {"_id": event["_id"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )


def delete_event(db: Database, owner: dict, event_id) -> None:
    event = get_owned_event(db, owner, event_id)
    db["event"].delete_one({"_id": event["_id"]})
    removed = db["application"].delete_many({"event_id": event["_id"]}).deleted_count
    logger.info("Event %s deleted with %d applications", event["_id"], removed)
