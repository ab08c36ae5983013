"""
Guardian token model.

One row per issued token. Rotation never mutates a token value: it inserts a
successor row and marks the old one ROTATED.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, text
from sqlalchemy.orm import validates

from ..constants import TokenDefaults
from ..enums import TokenStatus, TokenType
from .db_base import TimestampMixin, ensure_utc, utc_now
from .db_config import Base

_ACTIVE_ONLY = text("status = 'ACTIVE'")


class GuardianToken(Base, TimestampMixin):
    """A vendor-facing token standing in for a real entity id."""

    __tablename__ = "guardian_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_value = Column(String(16), nullable=False, unique=True)
    token_type = Column(Enum(TokenType, native_enum=False, length=20), nullable=False)
    entity_id = Column(Integer, nullable=False)
    entity_type = Column(String(20), nullable=False)

    # NULL means the token is valid for every vendor
    vendor_scope = Column(String(30), nullable=True)
    vendor_scope_key = Column(
        String(30), nullable=False, default=TokenDefaults.UNIVERSAL_SCOPE_KEY
    )

    school_year = Column(String(9), nullable=False)
    salt = Column(String(64), nullable=False)
    checksum = Column(String(8), nullable=False)
    status = Column(
        Enum(TokenStatus, native_enum=False, length=20),
        nullable=False,
        default=TokenStatus.ACTIVE,
    )

    expires_at = Column(DateTime(timezone=True), nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    rotation_count = Column(Integer, nullable=False, default=0)
    usage_count = Column(Integer, nullable=False, default=0)
    replaced_by_id = Column(Integer, nullable=True)
    created_by = Column(String(100), nullable=True)

    __table_args__ = (
        Index("ix_guardian_token_entity", "entity_type", "entity_id"),
        Index("ix_guardian_token_status_expires", "status", "expires_at"),
        Index("ix_guardian_token_vendor_scope", "vendor_scope"),
        Index("ix_guardian_token_school_year", "school_year"),
        # At most one ACTIVE token per entity and vendor scope
        Index(
            "uq_guardian_token_active_key",
            "entity_type",
            "entity_id",
            "vendor_scope_key",
            unique=True,
            sqlite_where=_ACTIVE_ONLY,
            postgresql_where=_ACTIVE_ONLY,
        ),
    )

    @validates("vendor_scope")
    def _sync_vendor_scope_key(self, key, value):
        value = value or None
        self.vendor_scope_key = value or TokenDefaults.UNIVERSAL_SCOPE_KEY
        return value

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return ensure_utc(self.expires_at) <= now

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.status == TokenStatus.ACTIVE and not self.is_expired(now)

    def record_usage(self, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used_at = now
        self.updated_at = now

    def revoke(self, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        self.status = TokenStatus.REVOKED
        self.updated_at = now

    def mark_rotated(self, replaced_by_id: int, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        self.status = TokenStatus.ROTATED
        self.replaced_by_id = replaced_by_id
        self.updated_at = now

    def __repr__(self) -> str:
        return (
            f"GuardianToken(id={self.id}, token_value='{self.token_value}', "
            f"status={self.status.value if self.status else None})"
        )
