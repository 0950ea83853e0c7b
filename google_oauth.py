"""Google OAuth (authorization code flow) for account login."""
import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

import settings
from errors import Unauthenticated

logger = logging.getLogger(__name__)


class GoogleOAuthProvider:
    """Exchange Google authorization codes for a verified profile."""

    GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
    GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v3/userinfo"

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def get_authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "access_type": "offline",
        }
        if state:
            params["state"] = state
        return f"{self.GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_tokens(self, code: str) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self.GOOGLE_TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
            response.raise_for_status()
            return response.json()

    async def get_user_info(self, access_token: str) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(
                self.GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            return response.json()

    async def authenticate(self, code: str) -> dict:
        """
        Complete the OAuth flow for an authorization code.

        Returns {"google_id", "email", "name"}; raises Unauthenticated when
        Google rejects the code or returns an unusable profile.
        """
        try:
            tokens = await self.exchange_code_for_tokens(code)
            access_token = tokens.get("access_token")
            if not access_token:
                raise Unauthenticated("Failed to get user info from Google")
            user_info = await self.get_user_info(access_token)
        except httpx.HTTPStatusError as e:
            logger.error("[GoogleOAuth] HTTP error during authentication: %s - %s",
                         e.response.status_code, e.response.text)
            raise Unauthenticated("Failed to get user info from Google")
        except httpx.RequestError as e:
            logger.error("[GoogleOAuth] Request error during authentication: %s", e)
            raise Unauthenticated("Failed to get user info from Google")

        if not user_info.get("sub") or not user_info.get("email"):
            logger.warning("[GoogleOAuth] Profile without subject or email")
            raise Unauthenticated("Failed to get user info from Google")
        if user_info.get("email_verified") is False:
            raise Unauthenticated("Google account email is not verified")

        return {
            "google_id": user_info["sub"],
            "email": user_info["email"],
            "name": user_info.get("name") or user_info["email"].split("@")[0],
        }


def get_google_oauth() -> GoogleOAuthProvider:
    """FastAPI dependency; overridden in tests."""
    return GoogleOAuthProvider(
        settings.GOOGLE_CLIENT_ID,
        settings.GOOGLE_CLIENT_SECRET,
        settings.GOOGLE_CALLBACK_URL,
    )
