"""
Credential store — sole owner of the Account lifecycle.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fhirlink.core.exceptions import AccountNotFound, ValidationFailed
from fhirlink.models.account import Account, AccountRole, AccountStatus

logger = logging.getLogger(__name__)


def normalise_email(email: str) -> str:
    return email.strip().lower()


class CredentialStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        email: str,
        role: AccountRole,
        password_hash: str | None,
        display_name: str | None = None,
        status: AccountStatus = AccountStatus.ACTIVE,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> Account:
        """Insert an account. Unique email / resource link clashes raise IntegrityError."""
        if status is AccountStatus.ACTIVE and not password_hash:
            raise ValidationFailed("An active account needs a password")
        if (resource_type is None) != (resource_id is None):
            raise ValidationFailed("Resource link needs both type and id")

        account = Account(
            email=email.strip(),
            email_normalized=normalise_email(email),
            display_name=display_name,
            hashed_password=password_hash,
            role=role.value,
            status=status.value,
            linked_resource_type=resource_type,
            linked_resource_id=resource_id,
        )
        self.session.add(account)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(account)
        logger.info("Account %s created (role=%s)", account.id, account.role)
        return account

    async def find_by_email(self, email: str) -> Account | None:
        result = await self.session.execute(
            select(Account).where(Account.email_normalized == normalise_email(email))
        )
        return result.scalar_one_or_none()

    async def get(self, account_id: int) -> Account | None:
        result = await self.session.execute(select(Account).where(Account.id == account_id))
        return result.scalar_one_or_none()

    async def find_by_resource(self, resource_type: str, resource_id: str) -> Account | None:
        result = await self.session.execute(
            select(Account).where(
                Account.linked_resource_type == resource_type,
                Account.linked_resource_id == resource_id,
            )
        )
        return result.scalar_one_or_none()

    async def list(self, skip: int = 0, limit: int = 100) -> Sequence[Account]:
        result = await self.session.execute(
            select(Account).order_by(Account.id).offset(skip).limit(limit)
        )
        return result.scalars().all()

    async def update(
        self,
        account_id: int,
        status: AccountStatus | None = None,
        display_name: str | None = None,
        password_hash: str | None = None,
    ) -> Account:
        account = await self.get(account_id)
        if account is None:
            raise AccountNotFound()

        if password_hash is not None:
            account.hashed_password = password_hash
        if display_name is not None:
            account.display_name = display_name
        if status is not None:
            if status is AccountStatus.ACTIVE and not account.hashed_password:
                raise ValidationFailed("An active account needs a password")
            account.status = status.value

        await self.session.commit()
        await self.session.refresh(account)
        logger.info("Account %s updated (status=%s)", account.id, account.status)
        return account
