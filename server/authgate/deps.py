from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, Request, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models import AuthSession
from .services import session_state
from .services.crypto import CryptoLayer
from .services.session_state import Anonymous, SessionState

logger = logging.getLogger(__name__)

SESSION_COOKIE = "authgate_session"

# Dev fallback only; create_app() refuses to start without SESSION_SECRET in production.
_EPHEMERAL_SECRET = secrets.token_bytes(32)


def _session_key() -> bytes:
    if settings.session_secret:
        return settings.session_secret.encode("utf-8")
    return _EPHEMERAL_SECRET


def session_digest(token: str) -> str:
    return hmac.new(_session_key(), token.encode("utf-8"), hashlib.sha256).hexdigest()


def get_crypto(request: Request) -> CryptoLayer:
    return request.app.state.crypto


@dataclass
class CurrentSession:
    row: AuthSession | None
    state: SessionState


def load_session(request: Request, db: Session) -> CurrentSession:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return CurrentSession(None, Anonymous())
    now = datetime.now(timezone.utc)
    row = db.execute(
        select(AuthSession).where(AuthSession.token_sha256 == session_digest(token), AuthSession.expires_at > now)
    ).scalar_one_or_none()
    if not row:
        return CurrentSession(None, Anonymous())
    return CurrentSession(row, session_state.from_stored(row.state, row.user_id, row.enroll_secret_enc))


def get_current_session(request: Request, db: Session = Depends(get_db)) -> CurrentSession:
    return load_session(request, db)


def _set_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        max_age=int(timedelta(days=settings.session_days).total_seconds()),
        path="/",
    )


def start_session(db: Session, request: Request, response: Response, state: session_state.Identified) -> AuthSession:
    """Issue a fresh session token for ``state``, replacing whatever the client held."""
    old = request.cookies.get(SESSION_COOKIE)
    if old:
        db.execute(delete(AuthSession).where(AuthSession.token_sha256 == session_digest(old)))

    # Opportunistic cleanup of expired sessions
    now = datetime.now(timezone.utc)
    db.execute(delete(AuthSession).where(AuthSession.expires_at <= now))

    token = secrets.token_urlsafe(32)
    row = AuthSession(
        token_sha256=session_digest(token),
        state=state.kind,
        user_id=state.user_id,
        enroll_secret_enc=state.enroll_secret_enc,
        expires_at=now + timedelta(days=settings.session_days),
    )
    db.add(row)
    _set_cookie(response, token)
    return row


def store_state(db: Session, current: CurrentSession, state: SessionState) -> None:
    """Write a transition back to the session row. Caller commits."""
    if current.row is None:
        raise RuntimeError("store_state requires a persisted session")
    if isinstance(state, Anonymous):
        db.delete(current.row)
        current.row = None
    else:
        current.row.state = state.kind
        current.row.user_id = state.user_id
        current.row.enroll_secret_enc = state.enroll_secret_enc
    current.state = state


def end_session(db: Session, request: Request, response: Response) -> None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        db.execute(delete(AuthSession).where(AuthSession.token_sha256 == session_digest(token)))
    response.delete_cookie(SESSION_COOKIE, path="/")
