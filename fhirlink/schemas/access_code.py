"""Pydantic schemas for access code issuance and inspection."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class IssuedCodeRead(BaseModel):
    resource_type: str
    resource_id: str
    code: str
    target_email: str
    expires_at: datetime

    model_config = {"from_attributes": True}


class VerifyCodeRequest(BaseModel):
    code: str


class VerifyCodeResponse(BaseModel):
    resource_type: str
    state: str
    expires_at: datetime


class AccessCodeRead(BaseModel):
    id: int
    code: str
    target_resource_type: str
    target_resource_id: str
    target_email: str
    state: str
    issued_at: datetime
    expires_at: datetime
    consumed_at: datetime | None


class SweepResponse(BaseModel):
    expired: int
