from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import CurrentSession, end_session, get_crypto, get_current_session, start_session
from ..errors import DecryptionError, InvalidCredentials, NotFound, ValidationError
from ..models import User
from ..schemas import LoginRequest, SignupRequest, UserProfile, UserSummary
from ..services import session_state, users
from ..services.audit import log_event
from ..services.crypto import CryptoLayer
from ..services.db_utils import transaction
from ..services.password_policy import check_password_strength

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _summary(user: User) -> UserSummary:
    return UserSummary(id=str(user.id), first_name=user.first_name, last_name=user.last_name, email=user.email)


@router.post("/signup", status_code=201)
def auth_signup(
    payload: SignupRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    crypto: CryptoLayer = Depends(get_crypto),
):
    first_name = (payload.first_name or "").strip()
    email = users.normalize_email(payload.email)
    password = payload.password or ""
    if not first_name or not email or not password:
        raise ValidationError("first_name, email, and password are required")
    if "@" not in email:
        raise ValidationError("email is invalid")
    check_password_strength(password)

    phone = (payload.phone or "").strip()
    with transaction(db):
        user = users.create_user(
            db,
            first_name=first_name,
            last_name=(payload.last_name or "").strip() or None,
            email=email,
            password_hash=crypto.hash_password(password),
            phone_enc=crypto.encrypt(phone) if phone else None,
        )
        start_session(db, request, response, session_state.after_signup(user.id))
        log_event(db, action="auth.signup", actor=user, request=request)

    logger.info("New user signed up: %s", user.id)
    return {"message": "Signup successful", "user": _summary(user).model_dump()}


@router.post("/login")
def auth_login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    crypto: CryptoLayer = Depends(get_crypto),
):
    email = users.normalize_email(payload.email)
    password = payload.password or ""
    if not email or not password:
        raise ValidationError("email and password are required")

    user = users.find_by_email(db, email)
    if user is None or not user.password_hash:
        # unknown and OAuth-only emails cost one hash, like a wrong password
        crypto.dummy_verify()
    if user is None or not crypto.verify_password(password, user.password_hash):
        with transaction(db):
            log_event(db, action="auth.login_failed", actor=None, request=request, email=email)
        raise InvalidCredentials()

    state = session_state.after_primary_login(user.id, bool(user.twofa_enabled))
    with transaction(db):
        start_session(db, request, response, state)
        log_event(db, action="auth.login", actor=user, request=request, meta={"state": state.kind})

    if isinstance(state, session_state.PendingSecondFactor):
        return {"success": True, "twofa_required": True, "message": "2FA required"}
    return {"success": True, "user": _summary(user).model_dump()}


@router.get("/me")
def auth_me(
    db: Session = Depends(get_db),
    crypto: CryptoLayer = Depends(get_crypto),
    current: CurrentSession = Depends(get_current_session),
):
    user_id = session_state.require_authenticated(current.state)
    user = users.get_user(db, user_id)
    if user is None:
        raise NotFound()

    phone = None
    if user.phone_enc:
        try:
            phone = crypto.decrypt(user.phone_enc)
        except DecryptionError:
            # profile still renders without the field
            logger.warning("Phone decryption failed for user %s", user.id, exc_info=True)

    profile = UserProfile(
        **_summary(user).model_dump(),
        phone=phone,
        is_2fa_enabled=bool(user.twofa_enabled),
    )
    return {"user": profile.model_dump()}


@router.get("/session")
def auth_session(current: CurrentSession = Depends(get_current_session)):
    fields = session_state.session_fields(current.state)
    return {
        "state": current.state.kind,
        "authenticated": fields["authenticated"],
        "user_id": str(fields["user_id"]) if fields["user_id"] else None,
        "pending_user_id": str(fields["pending_user_id"]) if fields["pending_user_id"] else None,
    }


@router.post("/logout")
def auth_logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    current: CurrentSession = Depends(get_current_session),
):
    actor = None
    if not isinstance(current.state, session_state.Anonymous):
        actor = users.get_user(db, current.state.user_id)
    with transaction(db):
        end_session(db, request, response)
        if actor:
            log_event(db, action="auth.logout", actor=actor, request=request)
    return {"success": True}
