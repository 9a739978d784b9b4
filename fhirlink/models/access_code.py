"""
AccessCode model — single-use, time-limited claim on a FHIR resource.

Rows are never deleted: consumed and expired codes stay behind as
tombstones so a value can never be issued twice.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String

from fhirlink.db.base import Base


class CodeState(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONSUMED = "consumed"


def as_utc(ts: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class AccessCode(Base):
    __tablename__ = "access_codes"
    __table_args__ = (
        Index("ix_access_codes_target", "target_resource_type", "target_resource_id"),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    code: str = Column(String(64), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    target_resource_type: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    target_resource_id: str = Column(String(64), nullable=False)  # type: ignore[assignment]
    target_email: str = Column(String(320), nullable=False)  # type: ignore[assignment]
    issued_at: datetime = Column(DateTime(timezone=True), nullable=False)  # type: ignore[assignment]
    expires_at: datetime = Column(DateTime(timezone=True), nullable=False, index=True)  # type: ignore[assignment]
    consumed_at: datetime | None = Column(DateTime(timezone=True), nullable=True)  # type: ignore[assignment]

    def state(self, now: datetime | None = None) -> CodeState:
        """Derive the lifecycle state; consumed wins over expiry."""
        if self.consumed_at is not None:
            return CodeState.CONSUMED
        now = now or datetime.now(timezone.utc)
        if as_utc(now) >= as_utc(self.expires_at):
            return CodeState.EXPIRED
        return CodeState.ACTIVE
