"""
rate_limit.py: Client identity and coarse request rate limiting
=================================================================
client_identity() is the key both slowapi and the login guard use to
track a caller. Forwarded-for headers are only honoured when the
service runs behind a trusted proxy.
"""
from __future__ import annotations

from fastapi import Request
from slowapi import Limiter

from .config import settings


def client_identity(request: Request) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("x-forwarded-for", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


limiter = Limiter(key_func=client_identity, enabled=settings.rate_limit_enabled)
