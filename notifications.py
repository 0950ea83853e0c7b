"""
Notification dispatch and read state

The dispatcher turns a domain event into persisted notification records and
a best-effort live push. The stored record is the source of truth: a
recipient who is offline, or whose socket fails mid-push, sees the
notification on the next fetch. Dispatch runs after the triggering write has
been committed and never fails the request that triggered it.
"""
import asyncio
import logging
import math
from typing import Iterable, List

from pymongo import ReturnDocument
from pymongo.database import Database

from database import object_id, to_public
from errors import NotFound
from schemas import Notification, utcnow

logger = logging.getLogger(__name__)

NEW_NOTIFICATION_EVENT = "notification:new"

STATUS_MESSAGES = {
    "accepted": "Congratulations! Your application to \"{title}\" has been accepted.",
    "rejected": "Your application to \"{title}\" was not accepted this time.",
}


class NotificationDispatcher:
    def __init__(self, db: Database, live=None):
        self.db = db
        self.live = live

    async def notify_new_event(self, event: dict, owner: dict) -> List[dict]:
        """Notify every student whose interest set contains the event owner."""
        try:
            records = await asyncio.to_thread(self._new_event_records, event, owner)
            return await self._store_and_push(records)
        except Exception:
            logger.exception("Failed to dispatch new_event notifications for event %s", event.get("_id"))
            return []

    def _new_event_records(self, event: dict, owner: dict) -> List[dict]:
        students = self.db["account"].find(
            {"role": "student", "interests": owner["_id"], "is_active": {"$ne": False}},
            {"_id": 1},
        )
        return [
            Notification(
                recipient_id=s["_id"],
                recipient_kind="student",
                type="new_event",
                title=f"New event from {owner['name']}",
                message=f"{owner['name']} posted a new event: {event['title']}",
                event_id=event["_id"],
                account_id=owner["_id"],
            ).model_dump()
            for s in students
        ]

    async def notify_new_application(self, application: dict, student: dict, event: dict) -> List[dict]:
        """Notify the university that owns the event."""
        try:
            record = Notification(
                recipient_id=event["owner_id"],
                recipient_kind="university",
                type="new_application",
                title="New application received",
                message=f"{student['name']} applied to {event['title']}",
                event_id=event["_id"],
                application_id=application["_id"],
                account_id=student["_id"],
            ).model_dump()
            return await self._store_and_push([record])
        except Exception:
            logger.exception("Failed to dispatch new_application notification for %s", application.get("_id"))
            return []

    async def notify_application_status(self, application: dict, event: dict, status: str) -> List[dict]:
        """Notify the applying student of the university's decision."""
        template = STATUS_MESSAGES.get(status)
        if template is None:
            return []
        try:
            record = Notification(
                recipient_id=application["student_id"],
                recipient_kind="student",
                type="application_status",
                title=f"Application {status}",
                message=template.format(title=event["title"]),
                event_id=event["_id"],
                application_id=application["_id"],
                account_id=event["owner_id"],
            ).model_dump()
            return await self._store_and_push([record])
        except Exception:
            logger.exception("Failed to dispatch application_status notification for %s", application.get("_id"))
            return []

    def _store(self, records: List[dict]) -> None:
        result = self.db["notification"].insert_many(records)
        for record, inserted_id in zip(records, result.inserted_ids):
            record["_id"] = inserted_id
        logger.info("Stored %d %s notification(s)", len(records), records[0]["type"])

    async def _store_and_push(self, records: List[dict]) -> List[dict]:
        if not records:
            return []
        # pymongo blocks; keep it off the event loop
        await asyncio.to_thread(self._store, records)

        if self.live is not None:
            for record in records:
                await self.live.emit_to_user(record["recipient_id"], NEW_NOTIFICATION_EVENT, to_public(record))
        return records


# Read state

def unread_count(db: Database, recipient_id) -> int:
    return db["notification"].count_documents({"recipient_id": recipient_id, "read": False})


def list_notifications(db: Database, recipient_id, page: int = 1, limit: int = 20, unread_only: bool = False):
    query = {"recipient_id": recipient_id}
    if unread_only:
        query["read"] = False
    total = db["notification"].count_documents(query)
    cursor = (
        db["notification"]
        .find(query)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    pagination = {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0}
    return list(cursor), unread_count(db, recipient_id), pagination


def mark_read(db: Database, recipient_id, notification_id) -> dict:
    """Set the read flag on one notification. Repeating the call changes nothing."""
    nid = object_id(notification_id, "Notification")
    record = db["notification"].find_one_and_update(
        {"_id": nid, "recipient_id": recipient_id, "read": False},
        {"$set": {"read": True, "read_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if record is None:
        record = db["notification"].find_one({"_id": nid, "recipient_id": recipient_id})
    if record is None:
        raise NotFound("Notification not found")
    return record


def mark_all_read(db: Database, recipient_id) -> int:
    result = db["notification"].update_many(
        {"recipient_id": recipient_id, "read": False},
        {"$set": {"read": True, "read_at": utcnow()}},
    )
    return result.modified_count


def delete_notification(db: Database, recipient_id, notification_id) -> None:
    nid = object_id(notification_id, "Notification")
    result = db["notification"].delete_one({"_id": nid, "recipient_id": recipient_id})
    if result.deleted_count == 0:
        raise NotFound("Notification not found")


def public_notifications(records: Iterable[dict]) -> List[dict]:
    return [to_public(r) for r in records]
