"""TOTP enrollment and verification flows.

Setup is two-faced: a user who already has 2FA gets their existing secret back
(to re-scan during login), anyone else gets a brand-new secret that only lives
in the session until a code for it is confirmed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models import User
from . import totp, users
from .crypto import CryptoLayer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Provisioning:
    secret: str
    otpauth_uri: str
    fresh: bool  # True when the secret is new and must be stashed in the session


def stored_secret(user: User, crypto: CryptoLayer) -> str:
    """Decrypt the persisted secret. DecryptionError propagates (500)."""
    if not user.totp_secret_enc:
        raise ValidationError("2FA not set up.")
    secret = crypto.decrypt(user.totp_secret_enc)
    if not secret:
        raise ValidationError("2FA not set up.")
    return secret


def provision(user: User, crypto: CryptoLayer, issuer: str) -> Provisioning:
    if user.twofa_enabled:
        secret = stored_secret(user, crypto)
        return Provisioning(secret, totp.otpauth_uri(user.email, secret, issuer), fresh=False)

    secret = totp.new_totp_secret()
    return Provisioning(secret, totp.otpauth_uri(user.email, secret, issuer), fresh=True)


def verify_login_code(user: User, crypto: CryptoLayer, code: str) -> bool:
    return totp.verify_totp(stored_secret(user, crypto), code)


def enable(db: Session, user: User, crypto: CryptoLayer, secret: str) -> list[str]:
    """Persist a confirmed secret, turn 2FA on and issue recovery codes.

    Returns the plaintext codes; only their hashes are stored, so this is the
    one time they can be shown. Caller commits.
    """
    users.set_totp_secret(db, user, crypto.encrypt(secret))
    users.set_twofa_enabled(db, user, True)

    codes = totp.generate_recovery_codes()
    users.insert_recovery_codes(db, user.id, totp.hash_recovery_codes(codes))
    logger.info("2FA enabled for user %s (%s recovery codes issued)", user.id, len(codes))
    return codes


def disable(db: Session, user: User) -> None:
    users.set_totp_secret(db, user, None)
    users.set_twofa_enabled(db, user, False)
    removed = users.delete_recovery_codes(db, user.id)
    logger.info("2FA disabled for user %s (%s recovery codes removed)", user.id, removed)
