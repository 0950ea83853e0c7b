"""
Student applications to events.

An application starts out pending and is decided exactly once by the
university owning the event. The unique (student_id, event_id) index is what
guarantees a single application per pair; the pre-check only produces a
nicer error in the common case.
"""
import logging

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import object_id
from errors import Conflict, Forbidden, NotFound, ValidationFailed
from events import get_event, get_owned_event
from schemas import Application, utcnow

logger = logging.getLogger(__name__)

DECISIONS = ("accepted", "rejected")


def create_application(db: Database, student: dict, event_id) -> tuple:
    """Returns (application, event)."""
    if student["role"] != "student":
        raise Forbidden("Only students can apply to events")
    event = get_event(db, event_id)

    if db["application"].find_one({"student_id": student["_id"], "event_id": event["_id"]}):
        raise Conflict("You have already applied to this event")

    doc = Application(student_id=student["_id"], event_id=event["_id"]).model_dump()
    try:
        doc["_id"] = db["application"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise Conflict("You have already applied to this event")
    logger.info("Application %s: student %s -> event %s", doc["_id"], student["_id"], event["_id"])
    return doc, event


def get_application(db: Database, application_id) -> dict:
    application = db["application"].find_one({"_id": object_id(application_id, "Application")})
    if application is None:
        raise NotFound("Application not found")
    return application


def update_application_status(db: Database, university: dict, application_id, new_status: str) -> tuple:
    """
    Decide a pending application. Returns (application, event).

    The update is conditional on the stored status still being pending, so a
    decision is applied at most once even under concurrent requests.
    """
    if new_status not in DECISIONS:
        raise ValidationFailed(f"Status must be one of: {', '.join(DECISIONS)}")

    application = get_application(db, application_id)
    try:
        event = get_owned_event(db, university, application["event_id"])
    except NotFound:
        raise NotFound("Event for this application no longer exists")

    updated = db["application"].find_one_and_update(
        {"_id": application["_id"], "status": "pending"},
        {"$set": {"status": new_status, "decided_at": utcnow(), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        current = db["application"].find_one({"_id": application["_id"]}) or application
        raise ValidationFailed(f"Application has already been {current['status']}")

    logger.info("Application %s %s by %s", updated["_id"], new_status, university["_id"])
    return updated, event


def list_student_applications(db: Database, student: dict) -> list:
    if student["role"] != "student":
        raise Forbidden("Only students have applications")
    return list(db["application"].find({"student_id": student["_id"]}).sort("created_at", -1))


def list_event_applications(db: Database, owner: dict, event_id) -> list:
    event = get_owned_event(db, owner, event_id)
    return list(db["application"].find({"event_id": event["_id"]}).sort("created_at", 1))
