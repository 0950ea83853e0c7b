import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import accounts
import applications
import events
import notifications
import settings
from database import client, db, ensure_indexes, get_db, to_public
from errors import ValidationFailed, register_error_handlers
from google_oauth import GoogleOAuthProvider, get_google_oauth
from live import ConnectionRegistry, serve_live_channel
from logging_config import install_crash_handlers, log_requests, setup_logging
from notifications import NotificationDispatcher
from schemas import MAX_EVENT_MEDIA
from security import clear_session_cookie, get_current_account, require_role, set_session_cookie

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.EXIT_ON_UNHANDLED:
        install_crash_handlers(asyncio.get_running_loop())
    try:
        ensure_indexes(db)
    except Exception:
        logger.critical("MongoDB connection error", exc_info=True)
        raise
    logger.info("Conevent API running in %s mode", settings.ENV.upper())
    yield
    client.close()


# App setup
app = FastAPI(title="Conevent API", lifespan=lifespan)
app.state.live = ConnectionRegistry()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
)
app.middleware("http")(log_requests)
register_error_handlers(app)


# Dependencies

def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.live


def get_dispatcher(
    database: Database = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
) -> NotificationDispatcher:
    return NotificationDispatcher(database, registry)


# Models for requests
class SignUpBody(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=accounts.MIN_PASSWORD_LENGTH)
    role: Literal["student", "university"] = "student"


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class UpdateProfileBody(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    bio: Optional[str] = Field(None, max_length=500)


class EventBody(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    date: datetime
    location: str = ""
    media: List[str] = Field(default_factory=list, max_length=MAX_EVENT_MEDIA)


class UpdateEventBody(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    date: Optional[datetime] = None
    location: Optional[str] = None
    media: Optional[List[str]] = Field(None, max_length=MAX_EVENT_MEDIA)


class StatusBody(BaseModel):
    status: str


def user_response(account: dict) -> dict:
    return {"success": True, "user": accounts.account_to_public(account)}


# Health
@app.get("/api/health")
def health():
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "Conevent API",
    }


# Auth Endpoints
@app.post("/api/auth/signup", status_code=201)
def signup(body: SignUpBody, response: Response, database: Database = Depends(get_db)):
    account = accounts.signup(database, body.email, body.password, body.name, body.role)
    set_session_cookie(response, account)
    return user_response(account)


@app.post("/api/auth/login")
def login(body: LoginBody, response: Response, database: Database = Depends(get_db)):
    account = accounts.authenticate_password(database, body.email, body.password)
    set_session_cookie(response, account)
    return user_response(account)


@app.get("/api/auth/google")
def google_redirect(provider: GoogleOAuthProvider = Depends(get_google_oauth)):
    return RedirectResponse(provider.get_authorization_url())


@app.get("/api/auth/google/callback")
async def google_callback(
    code: Optional[str] = None,
    provider: GoogleOAuthProvider = Depends(get_google_oauth),
    database: Database = Depends(get_db),
):
    if not code:
        raise ValidationFailed("Authorization code not provided")

    profile = await provider.authenticate(code)
    account = await asyncio.to_thread(accounts.authenticate_google, database, profile)

    if not account.get("is_active", True):
        return RedirectResponse(f"{settings.FRONTEND_URL}/login?error=account_deactivated")

    response = RedirectResponse(f"{settings.FRONTEND_URL}/dashboard")
    set_session_cookie(response, account)
    return response


@app.post("/api/auth/logout")
def logout(response: Response, current=Depends(get_current_account)):
    clear_session_cookie(response)
    return {"success": True, "message": "Logged out successfully"}


@app.get("/api/auth/me")
def me(current=Depends(get_current_account)):
    return user_response(current)


@app.put("/api/auth/profile")
def update_profile(body: UpdateProfileBody, current=Depends(get_current_account), database: Database = Depends(get_db)):
    account = accounts.update_profile(database, current, body.model_dump(exclude_unset=True))
    return user_response(account)


# Interest Endpoints
@app.get("/api/students/interests")
def get_interests(current=Depends(require_role("student")), database: Database = Depends(get_db)):
    universities = accounts.list_interests(database, current)
    return {"success": True, "universities": [accounts.account_to_public(u) for u in universities]}


@app.post("/api/students/interests/{university_id}")
def follow(university_id: str, current=Depends(require_role("student")), database: Database = Depends(get_db)):
    interests = accounts.follow_university(database, current, university_id)
    return {"success": True, "interests": [str(i) for i in interests]}


@app.delete("/api/students/interests/{university_id}")
def unfollow(university_id: str, current=Depends(require_role("student")), database: Database = Depends(get_db)):
    interests = accounts.unfollow_university(database, current, university_id)
    return {"success": True, "interests": [str(i) for i in interests]}


# Events Endpoints
@app.get("/api/events")
def get_events(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    owner: Optional[str] = None,
    current=Depends(get_current_account),
    database: Database = Depends(get_db),
):
    items, pagination = events.list_events(database, page, limit, owner_id=owner)
    return {"success": True, "events": [to_public(e) for e in items], "pagination": pagination}


@app.post("/api/events", status_code=201)
async def create_event(
    body: EventBody,
    current=Depends(require_role("university")),
    database: Database = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    event = await asyncio.to_thread(events.create_event, database, current, body.model_dump())
    await dispatcher.notify_new_event(event, current)
    return {"success": True, "event": to_public(event)}


@app.get("/api/events/{event_id}")
def get_event(event_id: str, current=Depends(get_current_account), database: Database = Depends(get_db)):
    return {"success": True, "event": to_public(events.get_event(database, event_id))}


@app.patch("/api/events/{event_id}")
def update_event(
    event_id: str,
    body: UpdateEventBody,
    current=Depends(require_role("university")),
    database: Database = Depends(get_db),
):
    event = events.update_event(database, current, event_id, body.model_dump(exclude_unset=True))
    return {"success": True, "event": to_public(event)}


@app.delete("/api/events/{event_id}")
def delete_event(event_id: str, current=Depends(require_role("university")), database: Database = Depends(get_db)):
    events.delete_event(database, current, event_id)
    return {"success": True, "message": "Event deleted"}


# Application Endpoints
@app.post("/api/events/{event_id}/applications", status_code=201)
async def apply(
    event_id: str,
    current=Depends(require_role("student")),
    database: Database = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    application, event = await asyncio.to_thread(applications.create_application, database, current, event_id)
    await dispatcher.notify_new_application(application, current, event)
    return {"success": True, "application": to_public(application)}


@app.get("/api/events/{event_id}/applications")
def get_event_applications(
    event_id: str,
    current=Depends(require_role("university")),
    database: Database = Depends(get_db),
):
    items = applications.list_event_applications(database, current, event_id)
    return {"success": True, "applications": [to_public(a) for a in items]}


@app.get("/api/applications/me")
def get_my_applications(current=Depends(require_role("student")), database: Database = Depends(get_db)):
    items = applications.list_student_applications(database, current)
    return {"success": True, "applications": [to_public(a) for a in items]}


@app.patch("/api/applications/{application_id}/status")
async def update_application_status(
    application_id: str,
    body: StatusBody,
    current=Depends(require_role("university")),
    database: Database = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    application, event = await asyncio.to_thread(
        applications.update_application_status, database, current, application_id, body.status
    )
    await dispatcher.notify_application_status(application, event, application["status"])
    return {"success": True, "application": to_public(application)}


# Notification Endpoints
@app.get("/api/notifications")
def get_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    current=Depends(get_current_account),
    database: Database = Depends(get_db),
):
    items, unread, pagination = notifications.list_notifications(
        database, current["_id"], page, limit, unread_only
    )
    return {
        "success": True,
        "notifications": notifications.public_notifications(items),
        "unread_count": unread,
        "pagination": pagination,
    }


@app.get("/api/notifications/unread-count")
def get_unread_count(current=Depends(get_current_account), database: Database = Depends(get_db)):
    return {"success": True, "unread_count": notifications.unread_count(database, current["_id"])}


@app.patch("/api/notifications/read-all")
def read_all(current=Depends(get_current_account), database: Database = Depends(get_db)):
    modified = notifications.mark_all_read(database, current["_id"])
    return {"success": True, "modified": modified}


@app.patch("/api/notifications/{notification_id}/read")
def read_one(notification_id: str, current=Depends(get_current_account), database: Database = Depends(get_db)):
    record = notifications.mark_read(database, current["_id"], notification_id)
    return {"success": True, "notification": to_public(record)}


@app.delete("/api/notifications/{notification_id}")
def delete_notification(notification_id: str, current=Depends(get_current_account), database: Database = Depends(get_db)):
    notifications.delete_notification(database, current["_id"], notification_id)
    return {"success": True, "message": "Notification deleted"}


# Live channel
@app.websocket("/api/ws")
async def live_channel(websocket: WebSocket, database: Database = Depends(get_db)):
    await serve_live_channel(websocket, database, websocket.app.state.live)


if __name__ == "__main__":
    import uvicorn
    setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
