from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends, Request, Response
from fastapi.security import OAuth2PasswordBearer
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import settings
from database import get_db
from errors import Forbidden, Unauthenticated

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

SESSION_MAX_AGE = settings.JWT_EXPIRE_DAYS * 24 * 60 * 60


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(account: dict, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {
        "sub": str(account["_id"]),
        "role": account["role"],
        "account_type": "account",
        "iat": now,
        "exp": now + (expires_delta or timedelta(days=settings.JWT_EXPIRE_DAYS)),
    }
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Return the token claims, or raise Unauthenticated for bad/expired tokens."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise Unauthenticated("Your token has expired. Please log in again.")
    except JWTError:
        raise Unauthenticated("Invalid token. Please log in again.")
    if not payload.get("sub") or not ObjectId.is_valid(payload["sub"]):
        raise Unauthenticated("Invalid token. Please log in again.")
    return payload


def resolve_session(db: Database, token: Optional[str]) -> dict:
    """Map a session token to its active account document."""
    if not token:
        raise Unauthenticated()
    payload = decode_access_token(token)
    account = db["account"].find_one({"_id": ObjectId(payload["sub"])})
    if account is None:
        raise Unauthenticated("The account belonging to this token no longer exists.")
    if not account.get("is_active", True):
        raise Unauthenticated("Account is deactivated")
    return account


def resolve_first_session(db: Database, *tokens: Optional[str]) -> dict:
    """Try each token in order and return the first active account it resolves to."""
    candidates = [t for t in tokens if t]
    for token in candidates[:-1]:
        try:
            return resolve_session(db, token)
        except Unauthenticated:
            continue
    return resolve_session(db, candidates[-1] if candidates else None)


def set_session_cookie(response: Response, account: dict) -> str:
    token = create_access_token(account)
    response.set_cookie(
        settings.SESSION_COOKIE,
        token,
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=not settings.is_development(),
        samesite="lax",
    )
    return token


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        settings.SESSION_COOKIE,
        httponly=True,
        secure=not settings.is_development(),
        samesite="lax",
    )


# Dependency: get current account
def get_current_account(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
) -> dict:
    return resolve_first_session(db, request.cookies.get(settings.SESSION_COOKIE), bearer)


def require_role(*roles: str):
    async def checker(current: dict = Depends(get_current_account)) -> dict:
        if current["role"] not in roles:
            raise Forbidden()
        return current

    return checker
