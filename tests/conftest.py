"""
Shared test fixtures for the FHIR Access Link test suite.

Each test gets its own file-backed aiosqlite database (so concurrent
sessions really use separate connections) and an in-memory FHIR server
behind ``httpx.MockTransport``.
"""

import itertools
import json
import os
import sys
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import pytest

# Ensure project root is importable
ROOT_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Override environment BEFORE importing application modules
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CORS_ORIGINS"] = '["*"]'
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["FHIR_SERVER_URL"] = "http://fhir.test/fhir"

import httpx
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fhirlink.api.v1.deps import get_db, get_resource_linker
from fhirlink.core.security import create_access_token, get_password_hash
from fhirlink.db.base import Base
from fhirlink.db.session import build_engine, build_session_factory
from fhirlink.main import app
from fhirlink.models.account import Account, AccountRole, AccountStatus
from fhirlink.services.resource_linker import FhirResourceLinker

STRONG_PASSWORD = "Sup3rSecret!"


class FakeFhirServer:
    """Just enough of a FHIR REST server: create, read, delete, metadata."""

    def __init__(self) -> None:
        self.resources: dict[tuple[str, str], dict[str, Any]] = {}
        self._ids = itertools.count(1001)
        self.reject_next = False
        self.down = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        parts = [p for p in request.url.path.split("/") if p][1:]  # drop "fhir"
        if parts == ["metadata"]:
            return httpx.Response(
                200,
                json={
                    "resourceType": "CapabilityStatement",
                    "name": "Fake FHIR",
                    "status": "active",
                    "fhirVersion": "4.0.1",
                },
            )

        if request.method == "POST" and len(parts) == 1:
            if self.reject_next:
                self.reject_next = False
                return httpx.Response(
                    422,
                    json={
                        "resourceType": "OperationOutcome",
                        "issue": [{"severity": "error", "code": "invalid", "diagnostics": "bad gender"}],
                    },
                )
            resource = json.loads(request.content)
            resource_id = str(next(self._ids))
            resource["id"] = resource_id
            self.resources[(parts[0], resource_id)] = resource
            return httpx.Response(201, json=resource)

        if request.method == "GET" and len(parts) == 2:
            resource = self.resources.get((parts[0], parts[1]))
            if resource is None:
                return httpx.Response(404, json={"resourceType": "OperationOutcome"})
            return httpx.Response(200, json=resource)

        return httpx.Response(400)

    def delete(self, resource_type: str, resource_id: str) -> None:
        self.resources.pop((resource_type, resource_id), None)


@pytest.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh file-backed database per test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'fhirlink.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Return a raw database session for direct queries in tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fhir_server() -> FakeFhirServer:
    return FakeFhirServer()


@pytest.fixture
async def linker(fhir_server: FakeFhirServer) -> AsyncGenerator[FhirResourceLinker, None]:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(fhir_server.handler),
        base_url="http://fhir.test/fhir",
    )
    yield FhirResourceLinker(client)
    await client.aclose()


@pytest.fixture
async def async_client(session_factory, linker) -> AsyncGenerator[AsyncClient, None]:
    """Return a httpx AsyncClient wired to the app."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_resource_linker] = lambda: linker

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _make_account(
    session: AsyncSession,
    email: str,
    role: AccountRole,
    status: AccountStatus = AccountStatus.ACTIVE,
    password: str = STRONG_PASSWORD,
    **link: str,
) -> Account:
    account = Account(
        email=email,
        email_normalized=email.lower(),
        hashed_password=get_password_hash(password),
        role=role.value,
        status=status.value,
        **link,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account


@pytest.fixture
def make_account(db_session: AsyncSession) -> Callable:
    async def _factory(email: str, role: AccountRole = AccountRole.PATIENT, **kwargs) -> Account:
        return await _make_account(db_session, email, role, **kwargs)

    return _factory


@pytest.fixture
async def admin_headers(db_session: AsyncSession) -> dict[str, str]:
    admin = await _make_account(db_session, "admin@clinic.test", AccountRole.ADMIN)
    token, _ = create_access_token(admin.id, admin.role)
    return {"Authorization": f"Bearer {token}"}


class FrozenClock:
    """Controllable clock for expiry tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()
