import os

ENV = os.getenv("ENV", "development")
PORT = int(os.getenv("PORT", 8000))

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "conevent")

# Security / Auth constants
JWT_SECRET = os.getenv("JWT_SECRET", "supersecretkey")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))
SESSION_COOKIE = "token"

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_CALLBACK_URL = os.getenv("GOOGLE_CALLBACK_URL", "http://localhost:8000/api/auth/google/callback")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
EXIT_ON_UNHANDLED = os.getenv("EXIT_ON_UNHANDLED", "true").lower() in ("true", "1", "yes", "on")


def is_development() -> bool:
    return ENV == "development"


def is_production() -> bool:
    return ENV == "production"
