"""Runpad - API Key Auth

When RUNPAD_API_KEY is set, protected routes require the X-API-Key header.
When it is empty the service runs in dev mode without auth.
"""

import secrets
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from runpad.config import settings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def key_is_valid(api_key: Optional[str]) -> bool:
    if not settings.API_KEY:
        return True
    if not api_key:
        return False
    return secrets.compare_digest(api_key, settings.API_KEY)


async def verify_api_key(api_key: Optional[str] = Security(api_key_header)):
    if not key_is_valid(api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return api_key
