from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import MissingEmail, OAuthError
from ..models import User
from . import users

logger = logging.getLogger(__name__)

PROVIDER = "google"
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
SCOPES = "openid email profile"
HTTP_TIMEOUT = 8.0


@dataclass(frozen=True)
class ProviderIdentity:
    subject: str
    email: str | None
    display_name: str | None = None
    provider: str = PROVIDER


def link_identity(db: Session, identity: ProviderIdentity) -> User:
    """Map a provider identity onto a local user, creating it on first login."""
    email = users.normalize_email(identity.email)
    if not email:
        raise MissingEmail()
    if not (identity.subject or "").strip():
        raise OAuthError("OAuth identity has no subject")
    return users.create_or_link_oauth_user(
        db,
        email=email,
        display_name=identity.display_name,
        subject=identity.subject,
        provider=identity.provider,
    )


# --- Google authorization-code handshake ---


def authorization_url(state: str) -> str:
    query = urlencode(
        {
            "client_id": settings.google_client_id or "",
            "response_type": "code",
            "redirect_uri": settings.oauth_callback_url,
            "scope": SCOPES,
            "state": state,
        }
    )
    return f"{GOOGLE_AUTH_URL}?{query}"


def exchange_code(code: str) -> str:
    try:
        resp = httpx.post(
            GOOGLE_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.oauth_callback_url,
                "client_id": settings.google_client_id or "",
                "client_secret": settings.google_client_secret or "",
            },
            timeout=HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except Exception as e:
        raise OAuthError(f"token exchange failed: {e}") from e

    token = data.get("access_token") if isinstance(data, dict) else None
    if not token:
        raise OAuthError("token response has no access_token")
    return str(token)


def fetch_identity(access_token: str) -> ProviderIdentity:
    try:
        resp = httpx.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        info = resp.json()
    except Exception as e:
        raise OAuthError(f"userinfo request failed: {e}") from e

    if not isinstance(info, dict):
        raise OAuthError("userinfo response is invalid")
    email = info.get("email")
    if email and info.get("email_verified") is False:
        # an unverified address must not be linked to an existing account
        logger.warning("OAuth userinfo email is not verified; ignoring it")
        email = None
    return ProviderIdentity(
        subject=str(info.get("sub") or ""),
        email=email,
        display_name=info.get("name"),
    )
