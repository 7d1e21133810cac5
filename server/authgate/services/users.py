from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import DuplicateEmail
from ..models import RecoveryCode, User

logger = logging.getLogger(__name__)

DEFAULT_OAUTH_NAME = "Google User"


def normalize_email(raw: str | None) -> str:
    return (raw or "").strip().lower()


def find_by_email(db: Session, email: str) -> User | None:
    return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()


def get_user(db: Session, user_id: uuid.UUID) -> User | None:
    return db.get(User, user_id)


def _insert(db: Session, user: User) -> User:
    # Unique index on email closes the check-then-insert race.
    # Must be the first write of the caller's transaction: a conflict rolls it back.
    db.add(user)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        logger.info("Duplicate email rejected on insert")
        raise DuplicateEmail() from e
    return user


def create_user(
    db: Session,
    *,
    first_name: str,
    last_name: str | None,
    email: str,
    password_hash: str | None,
    phone_enc: str | None = None,
) -> User:
    email_norm = normalize_email(email)
    if find_by_email(db, email_norm):
        raise DuplicateEmail()
    return _insert(
        db,
        User(
            first_name=first_name,
            last_name=last_name or None,
            email=email_norm,
            phone_enc=phone_enc,
            password_hash=password_hash,
        ),
    )


def split_display_name(name: str | None) -> tuple[str, str | None]:
    full = (name or "").strip() or DEFAULT_OAUTH_NAME
    first, _, rest = full.partition(" ")
    return first, (rest.strip() or None)


def create_or_link_oauth_user(
    db: Session,
    *,
    email: str,
    display_name: str | None,
    subject: str,
    provider: str,
) -> User:
    """Create an OAuth-only user, or attach the provider identity to an existing one.

    An existing row only has its provider linkage refreshed; password, phone and
    2FA fields are left alone.
    """
    email_norm = normalize_email(email)
    user = find_by_email(db, email_norm)
    if user is None:
        first, last = split_display_name(display_name)
        return _insert(
            db,
            User(
                first_name=first,
                last_name=last,
                email=email_norm,
                password_hash=None,
                oauth_subject=subject,
                oauth_provider=provider,
            ),
        )

    user.oauth_subject = subject
    user.oauth_provider = provider
    db.flush()
    return user


def set_totp_secret(db: Session, user: User, secret_enc: str | None) -> None:
    user.totp_secret_enc = secret_enc
    db.flush()


def set_twofa_enabled(db: Session, user: User, enabled: bool) -> None:
    user.twofa_enabled = bool(enabled)
    user.twofa_enabled_at = datetime.now(timezone.utc) if enabled else None
    db.flush()


def insert_recovery_codes(db: Session, user_id: uuid.UUID, code_hashes: Iterable[str]) -> None:
    db.add_all(RecoveryCode(user_id=user_id, code_hash=h) for h in code_hashes)
    db.flush()


def delete_recovery_codes(db: Session, user_id: uuid.UUID) -> int:
    return db.execute(delete(RecoveryCode).where(RecoveryCode.user_id == user_id)).rowcount or 0
