"""
Accounts: signup, password and Google login, profile and followed universities.
"""
import logging
from typing import Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import object_id, to_public
from errors import Conflict, Forbidden, InvalidCredentials, NotFound, Unauthenticated, ValidationFailed
from schemas import Account, utcnow
from security import hash_password, verify_password

logger = logging.getLogger(__name__)

EDITABLE_PROFILE_FIELDS = ("name", "bio")
SIGNUP_ROLES = ("student", "university")
MIN_PASSWORD_LENGTH = 6


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def account_to_public(account: dict) -> dict:
    if not account:
        return account
    public = to_public(account)
    public.pop("password_hash", None)
    return public


def get_account_by_email(db: Database, email: str) -> Optional[dict]:
    return db["account"].find_one({"email": normalize_email(email)})


def get_account_by_id(db: Database, account_id) -> Optional[dict]:
    return db["account"].find_one({"_id": object_id(account_id, "Account")})


def _build_account(**fields) -> dict:
    try:
        return Account(**fields).model_dump()
    except ValidationError as e:
        messages = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationFailed("Invalid input data. " + ". ".join(messages))


def _insert_account(db: Database, doc: dict) -> dict:
    try:
        doc["_id"] = db["account"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise Conflict("Email already exists")
    return doc


def signup(db: Database, email: str, password: str, name: str, role: str = "student") -> dict:
    if not email or not password or not name:
        raise ValidationFailed("Please provide email, password, and name")
    if role not in SIGNUP_ROLES:
        raise ValidationFailed(f"Role must be one of: {', '.join(SIGNUP_ROLES)}")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    email = normalize_email(email)
    if get_account_by_email(db, email):
        raise Conflict("Email already exists")

    doc = _build_account(email=email, password_hash=hash_password(password), name=name.strip(), role=role)
    account = _insert_account(db, doc)
    logger.info("Account %s created (%s)", account["_id"], role)
    return account


_DUMMY_HASH = None


def _burn_verify(password: str) -> bool:
    global _DUMMY_HASH
    if _DUMMY_HASH is None:
        _DUMMY_HASH = hash_password("conevent-dummy-password")
    verify_password(password, _DUMMY_HASH)
    return False


def authenticate_password(db: Database, email: str, password: str) -> dict:
    if not email or not password:
        raise ValidationFailed("Please provide email and password")

    account = get_account_by_email(db, email)
    # Always run a bcrypt verify so unknown emails cost the same as wrong passwords
    password_hash = account.get("password_hash") if account else None
    valid = verify_password(password, password_hash) if password_hash else _burn_verify(password)
    if not account or not password_hash:
        raise InvalidCredentials()
    if not account.get("is_active", True):
        raise Unauthenticated("Account is deactivated")
    if not valid:
        raise InvalidCredentials()
    return account


def authenticate_google(db: Database, profile: dict) -> dict:
    """
    Find or create the account for a verified Google profile.

    A profile whose email matches an existing password account links the
    Google id to it instead of creating a second account.
    """
    email = normalize_email(profile["email"])
    account = db["account"].find_one({"email": email})

    if account is None:
        doc = _build_account(email=email, google_id=profile["google_id"], name=profile["name"])
        try:
            account = _insert_account(db, doc)
            logger.info("Account %s created from Google login", account["_id"])
            return account
        except Conflict:
            # Lost a race with a concurrent first login for the same email
            account = db["account"].find_one({"email": email})

    if not account.get("google_id"):
        account = db["account"].find_one_and_update(
            {"_id": account["_id"]},
            {"$set": {"google_id": profile["google_id"], "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info("Linked Google id to account %s", account["_id"])
    return account


def update_profile(db: Database, account: dict, fields: dict) -> dict:
    update = {k: v for k, v in fields.items() if k in EDITABLE_PROFILE_FIELDS and v is not None}
    if "name" in update:
        update["name"] = update["name"].strip()
        if not update["name"]:
            del update["name"]
    if not update:
        return get_account_by_id(db, account["_id"])

    update["updated_at"] = utcnow()
    updated = db["account"].find_one_and_update(
        {"_id": account["_id"]},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFound("User not found")
    return updated


def _require_student(account: dict) -> None:
    if account["role"] != "student":
        raise Forbidden("Only students can follow universities")


def _get_university(db: Database, university_id) -> dict:
    university = db["account"].find_one({"_id": object_id(university_id, "University"), "role": "university"})
    if university is None:
        raise NotFound("University not found")
    return university


def follow_university(db: Database, student: dict, university_id) -> list:
    _require_student(student)
    university = _get_university(db, university_id)
    updated = db["account"].find_one_and_update(
        {"_id": student["_id"]},
        {"$addToSet": {"interests": university["_id"]}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return updated.get("interests", [])


def unfollow_university(db: Database, student: dict, university_id) -> list:
    _require_student(student)
    uid = object_id(university_id, "University")
    updated = db["account"].find_one_and_update(
        {"_id": student["_id"]},
        {"$pull": {"interests": uid}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return updated.get("interests", [])


def list_interests(db: Database, student: dict) -> list:
    _require_student(student)
    ids = student.get("interests") or []
    if not ids:
        return []
    return list(db["account"].find({"_id": {"$in": ids}, "role": "university"}).sort("name", 1))
