"""
Account model — login identity optionally linked to a FHIR resource.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from fhirlink.db.base import Base


class AccountRole(str, enum.Enum):
    ADMIN = "admin"
    PATIENT = "patient"  # clinical subject
    PRACTITIONER = "practitioner"  # clinical provider


class AccountStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


# Resource types that can be claimed with an access code
ROLE_FOR_RESOURCE: dict[str, AccountRole] = {
    "Patient": AccountRole.PATIENT,
    "Practitioner": AccountRole.PRACTITIONER,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint(
            "linked_resource_type", "linked_resource_id", name="uq_accounts_resource_link"
        ),
    )

    id: int = Column(Integer, primary_key=True, index=True)  # type: ignore[assignment]
    email: str = Column(String(320), nullable=False)  # type: ignore[assignment]
    email_normalized: str = Column(String(320), unique=True, nullable=False, index=True)  # type: ignore[assignment]
    display_name: str | None = Column(String(200), nullable=True)  # type: ignore[assignment]
    hashed_password: str | None = Column(String(128), nullable=True)  # type: ignore[assignment]
    role: str = Column(String(20), nullable=False)  # type: ignore[assignment]
    status: str = Column(  # type: ignore[assignment]
        String(20),
        nullable=False,
        default=AccountStatus.PENDING.value,
        server_default=AccountStatus.PENDING.value,
    )  # pending | active | disabled
    linked_resource_type: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    linked_resource_id: str | None = Column(String(64), nullable=True)  # type: ignore[assignment]
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)  # type: ignore[assignment]
    updated_at: datetime = Column(  # type: ignore[assignment]
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE.value
