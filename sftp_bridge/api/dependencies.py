"""
Internal API key validation for the dashboard backend -> sftp-bridge calls.

Enforced when INTERNAL_API_KEY is set to a non-empty value other than 'dev_key'.
Callers must include `X-Internal-Key: <key>` header.
"""

import hmac

from fastapi import Header, Request

from sftp_bridge.common.exceptions import UnauthorizedError
from sftp_bridge.config import settings


async def verify_internal_key(x_internal_key: str = Header(default="")) -> str:
    """FastAPI dependency: validates X-Internal-Key header for service-to-service auth."""
    key = settings.INTERNAL_API_KEY
    if key and key != "dev_key":
        if not hmac.compare_digest(x_internal_key.encode(), key.encode()):
            raise UnauthorizedError()
    return x_internal_key


def get_object_store(request: Request):
    return request.app.state.object_store


def get_sftp_server(request: Request):
    return getattr(request.app.state, "sftp_server", None)
