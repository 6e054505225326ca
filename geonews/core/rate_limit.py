"""
rate_limit.py — Global rate limiter instance.

Uses slowapi (a Starlette-compatible wrapper around the `limits` library).
Requests are keyed by client IP address. Routes opt in with
@limiter.limit("N/minute") and a `request: Request` parameter:

    POST /api/v1/news/query   20/minute  (each miss costs oracle calls)
    POST /api/v1/news/events  120/minute
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
