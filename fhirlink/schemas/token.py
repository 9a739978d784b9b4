"""Pydantic schemas for session tokens."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from fhirlink.schemas.account import AccountRead


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    account: AccountRead


class LogoutResponse(BaseModel):
    message: str
