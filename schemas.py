"""
Database Schemas for Conevent

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase class name (e.g., Account -> "account").
References to other documents are stored as ObjectIds.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["student", "university", "admin"]
ApplicationStatus = Literal["pending", "accepted", "rejected"]
NotificationType = Literal["new_event", "new_application", "application_status"]

MAX_EVENT_MEDIA = 4


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Account(Document):
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: Optional[str] = Field(None, description="bcrypt hash, password accounts only")
    google_id: Optional[str] = Field(None, description="Google subject id, OAuth accounts only")
    name: str = Field(..., min_length=2, max_length=100, description="Display name")
    bio: str = Field("", max_length=500, description="Profile text")
    role: Role = Field("student", description="Fixed at creation")
    is_active: bool = Field(True, description="Deactivated accounts cannot log in")
    interests: List[ObjectId] = Field(default_factory=list, description="Followed university ids (students)")


class Event(Document):
    owner_id: ObjectId = Field(..., description="University account that created the event")
    title: str = Field(..., min_length=1, max_length=200, description="Event title")
    description: str = Field("", max_length=5000, description="Event description")
    date: datetime = Field(..., description="When the event takes place")
    location: str = Field("", max_length=300, description="Venue or link")
    media: List[str] = Field(default_factory=list, max_length=MAX_EVENT_MEDIA, description="Media references")


class Application(Document):
    student_id: ObjectId = Field(..., description="Applying student")
    event_id: ObjectId = Field(..., description="Target event")
    status: ApplicationStatus = Field("pending", description="pending -> accepted | rejected")
    decided_at: Optional[datetime] = Field(None, description="When the status left pending")


class Notification(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    recipient_id: ObjectId = Field(..., description="Receiving account")
    recipient_kind: Role = Field(..., description="Role of the receiving account")
    type: NotificationType
    title: str
    message: str
    read: bool = False
    read_at: Optional[datetime] = None
    event_id: Optional[ObjectId] = None
    application_id: Optional[ObjectId] = None
    account_id: Optional[ObjectId] = Field(None, description="Account whose action produced the notification")
    created_at: datetime = Field(default_factory=utcnow)
