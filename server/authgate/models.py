import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Text, Boolean, Index, CheckConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from .db import Base


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String, nullable=False)
    last_name = Column(String)
    # always stored normalized (trimmed, lowercase)
    email = Column(String, unique=True, nullable=False, index=True)
    phone_enc = Column(Text)  # AES-GCM envelope; legacy rows may hold plaintext
    password_hash = Column(String)  # NULL for OAuth-only accounts

    oauth_subject = Column(String, index=True)
    oauth_provider = Column(String)

    # 2FA (TOTP)
    twofa_enabled = Column(Boolean, nullable=False, default=False)
    totp_secret_enc = Column(Text)  # AES-GCM envelope of the base32 secret
    twofa_enabled_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("password_hash IS NOT NULL OR oauth_subject IS NOT NULL", name="ck_users_has_credential"),
    )


class RecoveryCode(Base):
    __tablename__ = "recovery_codes"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String, nullable=False)  # sha256 hex
    used_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class AuthSession(Base):
    __tablename__ = "auth_sessions"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    token_sha256 = Column(String, unique=True, nullable=False, index=True)
    state = Column(String, nullable=False)  # registered|pending_second_factor|authenticated
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # TOTP secret of an enrollment that has not been confirmed yet
    enroll_secret_enc = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(String, nullable=False, index=True)

    actor_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    actor_email = Column(String, nullable=True, index=True)

    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    meta = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    __table_args__ = (
        Index("ix_audit_events_actor_created", "actor_user_id", "created_at"),
        Index("ix_audit_events_action_created", "action", "created_at"),
    )
