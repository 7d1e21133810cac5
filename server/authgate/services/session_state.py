"""Per-session authentication progress.

A session is exactly one of:

* ``Anonymous``: no identity.
* ``Registered``: just signed up; identity known, not logged in.
* ``PendingSecondFactor``: password accepted, TOTP code outstanding.
* ``Authenticated``: fully logged in.

Identified states may carry the encrypted secret of a TOTP enrollment that
has been started but not confirmed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from typing import ClassVar, Union

from ..errors import NotAuthenticated


@dataclass(frozen=True)
class Anonymous:
    kind: ClassVar[str] = "anonymous"


@dataclass(frozen=True)
class Registered:
    user_id: uuid.UUID
    enroll_secret_enc: str | None = None
    kind: ClassVar[str] = "registered"


@dataclass(frozen=True)
class PendingSecondFactor:
    user_id: uuid.UUID
    enroll_secret_enc: str | None = None
    kind: ClassVar[str] = "pending_second_factor"


@dataclass(frozen=True)
class Authenticated:
    user_id: uuid.UUID
    enroll_secret_enc: str | None = None
    kind: ClassVar[str] = "authenticated"


Identified = Union[Registered, PendingSecondFactor, Authenticated]
SessionState = Union[Anonymous, Registered, PendingSecondFactor, Authenticated]

_BY_KIND: dict[str, type] = {cls.kind: cls for cls in (Registered, PendingSecondFactor, Authenticated)}


def from_stored(kind: str, user_id: uuid.UUID | None, enroll_secret_enc: str | None = None) -> SessionState:
    cls = _BY_KIND.get(kind or "")
    if cls is None or user_id is None:
        return Anonymous()
    return cls(user_id=user_id, enroll_secret_enc=enroll_secret_enc)


def after_signup(user_id: uuid.UUID) -> Registered:
    return Registered(user_id)


def after_primary_login(user_id: uuid.UUID, twofa_enabled: bool) -> PendingSecondFactor | Authenticated:
    if twofa_enabled:
        return PendingSecondFactor(user_id)
    return Authenticated(user_id)


def after_second_factor(state: Identified) -> Authenticated:
    """Promote after a verified TOTP code; drops any unconfirmed enrollment."""
    return Authenticated(state.user_id)


def with_enroll_secret(state: Identified, secret_enc: str | None) -> Identified:
    return replace(state, enroll_secret_enc=secret_enc)


def require_identity(state: SessionState) -> Identified:
    if isinstance(state, Anonymous):
        raise NotAuthenticated("Authenticate first.")
    return state


def require_authenticated(state: SessionState) -> uuid.UUID:
    if not isinstance(state, Authenticated):
        raise NotAuthenticated()
    return state.user_id


def session_fields(state: SessionState) -> dict:
    """Flat view: full user id, pending user id, authenticated flag."""
    return {
        "user_id": state.user_id if isinstance(state, (Registered, Authenticated)) else None,
        "pending_user_id": state.user_id if isinstance(state, PendingSecondFactor) else None,
        "authenticated": isinstance(state, Authenticated),
    }
