"""Pydantic schemas for registration, login and account management."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from fhirlink.models.account import AccountStatus


class RegisterRequest(BaseModel):
    email: str
    password: str
    code: str
    name: str | None = Field(default=None, max_length=200)

    @field_validator("code")
    @classmethod
    def _code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Access code must not be empty")
        return v

    @field_validator("name")
    @classmethod
    def _name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class RegisterResponse(BaseModel):
    account_id: int
    role: str
    resource_type: str | None
    resource_id: str | None


class LoginRequest(BaseModel):
    email: str
    password: str


class AccountRead(BaseModel):
    id: int
    email: str
    display_name: str | None
    role: str
    status: str
    linked_resource_type: str | None
    linked_resource_id: str | None
    created_at: datetime | None

    model_config = {"from_attributes": True}


class AdminCreate(BaseModel):
    email: str
    password: str
    display_name: str | None = None


class AccountUpdate(BaseModel):
    status: AccountStatus | None = None
    display_name: str | None = None

    @field_validator("status")
    @classmethod
    def _settable(cls, v: AccountStatus | None) -> AccountStatus | None:
        if v is AccountStatus.PENDING:
            raise ValueError("Status can only be set to active or disabled")
        return v
