from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from ..models import AuditEvent, User

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def client_ip(request: Request | None) -> str | None:
    if not request:
        return None
    xff = request.headers.get("X-Forwarded-For")
    if xff:
        return xff.split(",")[0].strip()
    xri = request.headers.get("X-Real-IP")
    if xri:
        return xri.strip()
    return request.client.host if request.client else None


def user_agent(request: Request | None) -> str | None:
    if not request:
        return None
    ua = request.headers.get("User-Agent")
    return (ua[:500] if ua else None)


def log_event(
    db: Session,
    *,
    action: str,
    actor: User | None,
    request: Request | None = None,
    email: str | None = None,
    meta: dict[str, Any] | None = None,
) -> None:
    """Best-effort audit record. Never raises; the caller's transaction commits it.

    ``email`` is recorded when there is no actor (e.g. failed logins).
    """

    try:
        ev = AuditEvent(
            action=(action or "").strip()[:120],
            actor_user_id=getattr(actor, "id", None) if actor else None,
            actor_email=(getattr(actor, "email", None) if actor else email),
            ip_address=client_ip(request),
            user_agent=user_agent(request),
            meta=(meta or {}),
            created_at=_now(),
        )
        db.add(ev)
    except Exception:
        logger.warning("Failed to record audit event %s", action, exc_info=True)
