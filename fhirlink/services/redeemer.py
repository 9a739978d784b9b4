"""
Registration redeemer — turns an access code plus credentials into an
account linked to the code's FHIR resource.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from fhirlink.core.exceptions import (
    AccountCreationFailed,
    CodeAlreadyConsumed,
    CodeExpired,
    CodeNotFound,
    EmailMismatch,
    InvalidEmail,
    StoreUnavailable,
    ValidationFailed,
)
from fhirlink.core.security import (
    bounded,
    check_password_strength,
    code_hint,
    hash_password,
    is_valid_email,
)
from fhirlink.models.access_code import AccessCode, CodeState
from fhirlink.models.account import ROLE_FOR_RESOURCE, Account, AccountStatus
from fhirlink.stores.access_code_store import AccessCodeStore
from fhirlink.stores.credential_store import CredentialStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationRedeemer:
    def __init__(
        self,
        codes: AccessCodeStore,
        credentials: CredentialStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.codes = codes
        self.credentials = credentials
        self.clock = clock

    async def check_code(self, submitted_code: str, email: str | None = None) -> AccessCode:
        """Read-only check that a code could be redeemed right now.

        With *email*, the code must also have been issued for that
        address. Errors match the ones the atomic consume would raise.
        """
        row = await bounded(self.codes.get(submitted_code), "code lookup")
        if row is None:
            raise CodeNotFound()
        state = row.state(self.clock())
        if state is CodeState.CONSUMED:
            raise CodeAlreadyConsumed()
        if state is CodeState.EXPIRED:
            raise CodeExpired()
        if email is not None and row.target_email.lower() != email.strip().lower():
            raise EmailMismatch()
        return row

    async def redeem(
        self,
        submitted_code: str,
        email: str,
        password: str,
        display_name: str | None = None,
    ) -> Account:
        """Consume *submitted_code* and create the linked account.

        Input is validated and the password hashed before the code is
        touched. Once the code is consumed it stays consumed: a failure
        creating the account is reported for manual reconciliation and
        the registrant needs a freshly issued code.
        """
        email = email.strip()
        if not is_valid_email(email):
            raise InvalidEmail("Email address is malformed")
        check_password_strength(password)
        if not submitted_code:
            raise ValidationFailed("Access code is required")

        # Only the code's own target email can learn whether it is registered
        await self.check_code(submitted_code, email)

        existing = await bounded(self.credentials.find_by_email(email), "email lookup")
        if existing is not None:
            # A concurrent redemption of this code may have created it
            await self.check_code(submitted_code, email)
            raise InvalidEmail("Registration cannot be completed for this email")

        password_hash = await hash_password(password)

        code = await bounded(
            self.codes.consume(submitted_code, email, self.clock()),
            "code consumption",
        )

        # Rollback on a failed insert expires loaded rows; keep plain values
        code_id, code_value = code.id, code.code
        resource_type, resource_id = code.target_resource_type, code.target_resource_id

        try:
            role = ROLE_FOR_RESOURCE[resource_type]
            account = await bounded(
                self.credentials.create(
                    email=email,
                    role=role,
                    password_hash=password_hash,
                    display_name=display_name,
                    status=AccountStatus.ACTIVE,
                    resource_type=resource_type,
                    resource_id=resource_id,
                ),
                "account creation",
            )
        except (KeyError, SQLAlchemyError, StoreUnavailable, ValidationFailed) as exc:
            logger.critical(
                "RECONCILE: access code %s (id=%s) consumed but account creation for "
                "%s/%s failed at stage 'account creation': %s",
                code_hint(code_value),
                code_id,
                resource_type,
                resource_id,
                type(exc).__name__,
            )
            raise AccountCreationFailed() from exc

        logger.info(
            "Account %s registered and linked to %s/%s",
            account.id,
            account.linked_resource_type,
            account.linked_resource_id,
        )
        return account
