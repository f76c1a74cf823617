"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

This is the per-IP layer only. The per-identity hourly dispatch budget lives
in auth/rate_limit.py and is enforced no matter which IP a request comes from.

A single shared instance means all routes share the same in-memory counter
store; separate instances per module would each count in isolation and the
limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
