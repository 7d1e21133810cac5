from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import CurrentSession, get_crypto, get_current_session, store_state
from ..errors import InvalidCode, NotFound, ValidationError
from ..models import User
from ..schemas import TwoFACodeRequest
from ..services import session_state, totp, twofa, users
from ..services.audit import log_event
from ..services.crypto import CryptoLayer
from ..services.db_utils import transaction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/twofa", tags=["twofa"])

SUPPORTED_METHOD = "app"


def _session_user(db: Session, current: CurrentSession) -> tuple[session_state.Identified, User]:
    state = session_state.require_identity(current.state)
    user = users.get_user(db, state.user_id)
    if user is None:
        raise NotFound("User not found.")
    return state, user


def _code_payload(payload: TwoFACodeRequest) -> str:
    if (payload.method or "").strip().lower() != SUPPORTED_METHOD or not (payload.token or "").strip():
        raise ValidationError("Invalid request.")
    return payload.token.strip()


@router.get("/setup")
def twofa_setup(
    method: str = "",
    db: Session = Depends(get_db),
    crypto: CryptoLayer = Depends(get_crypto),
    current: CurrentSession = Depends(get_current_session),
):
    if (method or "").strip().lower() != SUPPORTED_METHOD:
        raise ValidationError("Only 'app' method supported.")

    state, user = _session_user(db, current)
    prov = twofa.provision(user, crypto, settings.totp_issuer)
    if prov.fresh:
        # never written to the user row until a code for it is confirmed
        with transaction(db):
            store_state(db, current, session_state.with_enroll_secret(state, crypto.encrypt(prov.secret)))

    return {"qr": totp.qr_data_url(prov.otpauth_uri)}


@router.post("/verify")
def twofa_verify(
    payload: TwoFACodeRequest,
    request: Request,
    db: Session = Depends(get_db),
    crypto: CryptoLayer = Depends(get_crypto),
    current: CurrentSession = Depends(get_current_session),
):
    code = _code_payload(payload)
    state, user = _session_user(db, current)

    if isinstance(state, session_state.PendingSecondFactor) or user.twofa_enabled:
        # second factor of a login
        if not twofa.verify_login_code(user, crypto, code):
            logger.info("Invalid 2FA code for user %s", user.id)
            with transaction(db):
                log_event(db, action="twofa.verify_failed", actor=user, request=request)
            raise InvalidCode()
        with transaction(db):
            store_state(db, current, session_state.after_second_factor(state))
            log_event(db, action="twofa.verify", actor=user, request=request)
        return {"success": True}

    # confirmation of a pending enrollment
    if not state.enroll_secret_enc:
        raise ValidationError("Setup not initiated.")
    secret = crypto.decrypt(state.enroll_secret_enc)
    if not totp.verify_totp(secret, code):
        raise InvalidCode()

    with transaction(db):
        recovery_codes = twofa.enable(db, user, crypto, secret)
        store_state(db, current, session_state.after_second_factor(state))
        log_event(db, action="twofa.enable", actor=user, request=request)

    return {"success": True, "recoveryCodes": recovery_codes}


@router.post("/disable")
def twofa_disable(
    payload: TwoFACodeRequest,
    request: Request,
    db: Session = Depends(get_db),
    crypto: CryptoLayer = Depends(get_crypto),
    current: CurrentSession = Depends(get_current_session),
):
    code = _code_payload(payload)
    user_id = session_state.require_authenticated(current.state)
    user = users.get_user(db, user_id)
    if user is None:
        raise NotFound()

    if not user.twofa_enabled:
        return {"success": True}
    if not twofa.verify_login_code(user, crypto, code):
        raise InvalidCode()

    with transaction(db):
        twofa.disable(db, user)
        log_event(db, action="twofa.disable", actor=user, request=request)
    return {"success": True}
