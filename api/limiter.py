"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/security.py (to apply per-route limits with @limiter.limit()).

A single shared instance means all routes share one in-memory counter store.
Keys are client IPs: the public ingest route is keyed per visitor, which
bounds how fast a single browser can push submissions.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
