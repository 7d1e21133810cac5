from __future__ import annotations

import hmac
import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import start_session
from ..errors import AuthError
from ..services import oauth, session_state
from ..services.audit import log_event
from ..services.db_utils import transaction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["oauth"])

STATE_COOKIE = "authgate_oauth_state"


def _failure() -> RedirectResponse:
    resp = RedirectResponse(url=settings.oauth_failure_redirect, status_code=302)
    resp.delete_cookie(STATE_COOKIE, path="/")
    return resp


@router.get("/google")
def oauth_google_start():
    if not settings.oauth_enabled:
        raise HTTPException(404, "OAuth is disabled")

    state = secrets.token_urlsafe(32)
    redirect = RedirectResponse(url=oauth.authorization_url(state), status_code=302)
    redirect.set_cookie(
        key=STATE_COOKIE,
        value=state,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        max_age=600,
        path="/",
    )
    return redirect


@router.get("/google/callback")
def oauth_google_callback(
    request: Request,
    code: str = "",
    state: str = "",
    error: str = "",
    db: Session = Depends(get_db),
):
    if not settings.oauth_enabled:
        raise HTTPException(404, "OAuth is disabled")

    expected = request.cookies.get(STATE_COOKIE) or ""
    if error or not code or not state or not expected or not hmac.compare_digest(state, expected):
        logger.warning("OAuth callback rejected (error=%r)", error or "state mismatch")
        return _failure()

    try:
        identity = oauth.fetch_identity(oauth.exchange_code(code))
        with transaction(db):
            user = oauth.link_identity(db, identity)
            next_state = session_state.after_primary_login(user.id, bool(user.twofa_enabled))
            target = (
                settings.oauth_twofa_redirect
                if isinstance(next_state, session_state.PendingSecondFactor)
                else settings.oauth_success_redirect
            )
            resp = RedirectResponse(url=target, status_code=302)
            start_session(db, request, resp, next_state)
            log_event(db, action="oauth.login", actor=user, request=request, meta={"provider": identity.provider})
    except AuthError as e:
        logger.warning("OAuth login failed: %s", e.message)
        return _failure()
    except Exception:
        logger.error("OAuth callback failed", exc_info=True)
        return _failure()

    resp.delete_cookie(STATE_COOKIE, path="/")
    logger.info("OAuth login for user %s via %s", user.id, identity.provider)
    return resp
