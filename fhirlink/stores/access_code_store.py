"""
Access code store — sole owner of the AccessCode lifecycle.

``consume`` is the single serialization point for redemption: it is one
conditional UPDATE keyed on the code value, so of any number of callers
presenting the same code exactly one sees a matched row.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fhirlink.core.exceptions import (
    CodeAlreadyConsumed,
    CodeExpired,
    CodeNotFound,
    EmailMismatch,
)
from fhirlink.core.security import code_hint
from fhirlink.models.access_code import AccessCode, CodeState

logger = logging.getLogger(__name__)


class AccessCodeStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        code: str,
        resource_type: str,
        resource_id: str,
        target_email: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> AccessCode:
        """Persist a new active code. A duplicate value raises IntegrityError."""
        row = AccessCode(
            code=code,
            target_resource_type=resource_type,
            target_resource_id=resource_id,
            target_email=target_email,
            issued_at=issued_at,
            expires_at=expires_at,
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(row)
        return row

    @staticmethod
    def _by_code(code: str):
        return (
            select(AccessCode)
            .where(AccessCode.code == code)
            .execution_options(populate_existing=True)
        )

    async def get(self, code: str) -> AccessCode | None:
        result = await self.session.execute(self._by_code(code))
        return result.scalar_one_or_none()

    async def consume(self, code: str, email: str, now: datetime) -> AccessCode:
        """Atomically move *code* from active to consumed.

        The guard covers existence, consumption, expiry and the target
        email in one statement. When nothing matched, the row is read
        back only to pick the error to report, and the transaction is
        rolled back: rows the caller loaded through this session are
        expired and must be re-read before use.
        """
        result = await self.session.execute(
            update(AccessCode)
            .where(
                AccessCode.code == code,
                AccessCode.consumed_at.is_(None),
                AccessCode.expires_at > now,
                func.lower(AccessCode.target_email) == email.strip().lower(),
            )
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            await self.session.commit()
            row = (await self.session.execute(self._by_code(code))).scalar_one()
            logger.info(
                "Access code %s consumed for %s/%s",
                code_hint(code),
                row.target_resource_type,
                row.target_resource_id,
            )
            return row

        row = await self.get(code)
        state = row.state(now) if row is not None else None
        await self.session.rollback()
        if state is None:
            raise CodeNotFound()
        if state is CodeState.CONSUMED:
            raise CodeAlreadyConsumed()
        if state is CodeState.EXPIRED:
            raise CodeExpired()
        raise EmailMismatch()

    async def list(
        self,
        now: datetime,
        state: CodeState | None = None,
        resource_type: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[AccessCode]:
        stmt = select(AccessCode)
        if state is CodeState.CONSUMED:
            stmt = stmt.where(AccessCode.consumed_at.is_not(None))
        elif state is CodeState.EXPIRED:
            stmt = stmt.where(AccessCode.consumed_at.is_(None), AccessCode.expires_at <= now)
        elif state is CodeState.ACTIVE:
            stmt = stmt.where(AccessCode.consumed_at.is_(None), AccessCode.expires_at > now)
        if resource_type:
            stmt = stmt.where(AccessCode.target_resource_type == resource_type)
        stmt = stmt.order_by(AccessCode.issued_at.desc(), AccessCode.id.desc())
        result = await self.session.execute(stmt.offset(offset).limit(limit))
        return result.scalars().all()

    async def expire_sweep(self, now: datetime) -> Sequence[AccessCode]:
        """Report every unconsumed code whose expiry has passed.

        State is derived from the timestamps, so lapsed codes are already
        terminal; the sweep only surfaces them and leaves the rows intact.
        """
        result = await self.session.execute(
            select(AccessCode)
            .where(AccessCode.consumed_at.is_(None), AccessCode.expires_at <= now)
            .order_by(AccessCode.expires_at)
        )
        lapsed = result.scalars().all()
        for row in lapsed:
            logger.info(
                "Access code %s for %s/%s expired at %s unredeemed",
                code_hint(row.code),
                row.target_resource_type,
                row.target_resource_id,
                row.expires_at.isoformat(),
            )
        return lapsed
