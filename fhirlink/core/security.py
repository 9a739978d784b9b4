"""
Password hashing (bcrypt), password policy, access-code generation and
JWT session tokens.
"""

from __future__ import annotations

import asyncio
import base64
import re
import secrets
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from fhirlink.core.config import settings
from fhirlink.core.exceptions import (
    HashingUnavailable,
    StoreUnavailable,
    TokenExpired,
    TokenInvalid,
    WeakPassword,
)

T = TypeVar("T")

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+'-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")


# ── Passwords ───────────────────────────────────────────────────────
def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def get_password_hash(plain: str) -> str:
    return pwd_context.hash(plain)


def dummy_verify() -> None:
    """Burn the same time as a real verify when there is no hash to check."""
    pwd_context.dummy_verify()


async def _off_loop(func: Callable[..., T], *args: Any) -> T:
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args),
            timeout=settings.PASSWORD_HASH_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        raise HashingUnavailable() from exc


async def hash_password(plain: str) -> str:
    """Hash off the event loop, bounded by PASSWORD_HASH_TIMEOUT_SECONDS."""
    return await _off_loop(get_password_hash, plain)


async def check_password(plain: str, hashed: str | None) -> bool:
    """Constant-work check: with no hash, a dummy verify still runs."""
    if hashed is None:
        await _off_loop(dummy_verify)
        return False
    return await _off_loop(verify_password, plain, hashed)


def check_password_strength(password: str) -> None:
    """Raise :class:`WeakPassword` unless *password* meets the configured floor."""
    problems: list[str] = []
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        problems.append(f"at least {settings.PASSWORD_MIN_LENGTH} characters")
    if settings.PASSWORD_REQUIRE_UPPER and not re.search(r"[A-Z]", password):
        problems.append("an uppercase letter")
    if settings.PASSWORD_REQUIRE_LOWER and not re.search(r"[a-z]", password):
        problems.append("a lowercase letter")
    if settings.PASSWORD_REQUIRE_DIGIT_OR_SYMBOL and not re.search(r"[\d\W_]", password):
        problems.append("a number or special character")
    if problems:
        raise WeakPassword("Password must contain " + ", ".join(problems))


def is_valid_email(email: str) -> bool:
    return len(email) <= 320 and _EMAIL_RE.match(email) is not None


# ── Access codes ────────────────────────────────────────────────────
def generate_access_code(num_bytes: int | None = None) -> str:
    """Return an unguessable, transport-safe code (base32, no padding)."""
    raw = secrets.token_bytes(num_bytes or settings.ACCESS_CODE_BYTES)
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def code_hint(code: str) -> str:
    """Short prefix that is safe to put in logs."""
    return f"{code[:4]}…"


# ── Bounded store calls ─────────────────────────────────────────────
async def bounded(awaitable: Awaitable[T], stage: str, timeout: float | None = None) -> T:
    """Await a store call under STORE_TIMEOUT_SECONDS, mapping timeouts."""
    try:
        return await asyncio.wait_for(
            awaitable, timeout=timeout or settings.STORE_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError as exc:
        raise StoreUnavailable(f"Data store timed out during {stage}") from exc


# ── JWT tokens ──────────────────────────────────────────────────────
def create_access_token(
    subject: str | Any,
    role: str,
    expires_delta: timedelta | None = None,
    now: datetime | None = None,
) -> tuple[str, datetime]:
    issued = now or datetime.now(timezone.utc)
    expire = issued + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    token = jwt.encode(
        {
            "sub": str(subject),
            "role": role,
            "iat": int(issued.timestamp()),
            "exp": int(expire.timestamp()),
            "type": "access",
        },
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )
    return token, expire


def decode_access_token(token: str) -> dict:
    """Return the payload of a valid *access* token or raise."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc
    if payload.get("type") != "access" or not payload.get("sub"):
        raise TokenInvalid()
    return payload
