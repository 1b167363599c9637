"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. RATE_LIMIT_STORAGE_URI=redis://... makes the counters shared across
API instances as well; the default memory:// store is per process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    enabled=_settings.rate_limit_enabled,
)

STRICT_LIMIT = _settings.strict_rate_limit
MODERATE_LIMIT = _settings.moderate_rate_limit
