"""Rate limiter shared by the auth endpoints and the app factory."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from fhirlink.core.config import settings

# Keyed by client IP
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
