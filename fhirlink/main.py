"""
FHIR Access Link — application entry point.

This is the **only** file that assembles the app.  Business logic lives
in the `services/` and `stores/` packages; `api/` is a thin HTTP layer.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from fhirlink.api.v1.api import api_router
from fhirlink.core.config import settings
from fhirlink.core.exceptions import register_exception_handlers
from fhirlink.core.limiter import limiter
from fhirlink.core.security import hash_password
from fhirlink.db.base import Base
from fhirlink.db.session import build_engine, build_session_factory

# Ensure all models are imported so metadata.create_all can see them
from fhirlink.models.access_code import AccessCode  # noqa: F401
from fhirlink.models.account import AccountRole, AccountStatus
from fhirlink.services.resource_linker import FhirResourceLinker
from fhirlink.stores.credential_store import CredentialStore

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_engine()
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.resource_linker = FhirResourceLinker.from_settings()

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")

    # Seed default admin on first run
    async with app.state.session_factory() as session:
        credentials = CredentialStore(session)
        if await credentials.find_by_email(settings.FIRST_ADMIN_EMAIL) is None:
            await credentials.create(
                email=settings.FIRST_ADMIN_EMAIL,
                role=AccountRole.ADMIN,
                password_hash=await hash_password(settings.FIRST_ADMIN_PASSWORD),
                display_name="System Administrator",
                status=AccountStatus.ACTIVE,
            )
            logger.info(
                "Default admin created: %s (password: <redacted>)",
                settings.FIRST_ADMIN_EMAIL,
            )

    logger.info("%s v%s started", settings.PROJECT_NAME, settings.VERSION)
    yield
    await app.state.resource_linker.aclose()
    await engine.dispose()
    logger.info("Shutdown complete")


# ── App factory ─────────────────────────────────────────────────────
def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.PROJECT_NAME,
        description="Access-code onboarding for FHIR Patient and Practitioner records",
        version=settings.VERSION,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting (login / register)
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # Global exception handlers (prevent stack-trace leakage)
    register_exception_handlers(application)

    # Mount API v1
    application.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return application


app = create_app()
