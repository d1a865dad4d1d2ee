"""Request dependencies: the API key gate and the per-request tracker context.

Every tracker route runs behind ``verify_api_key`` and receives a
``RequestContext`` naming whose data it touches and which local day "today" is.
"""

import secrets
from dataclasses import dataclass

from fastapi import Cookie, Header, HTTPException

from app.config import settings
from app.tracker.time_resolver import normalize_offset


@dataclass(frozen=True)
class RequestContext:
    owner_id: str
    offset_minutes: int  # positive = east of UTC


def _presented_key(x_api_key: str | None, authorization: str | None) -> str | None:
    if x_api_key is not None:
        return x_api_key
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


async def verify_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None),
) -> str:
    """Require ``settings.api_key`` via X-API-Key or a Bearer token.

    With no key configured the API is open and an empty string is returned.
    """
    if settings.api_key is None:
        return ""
    key = _presented_key(x_api_key, authorization)
    if key is None or not secrets.compare_digest(key.encode(), settings.api_key.encode()):
        raise HTTPException(status_code=401, detail="invalid_api_key")
    return key


async def get_request_context(
    x_owner_id: str | None = Header(default=None, alias="X-Owner-Id"),
    x_timezone_offset: str | None = Header(default=None, alias="X-Timezone-Offset"),
    tz_offset: str | None = Cookie(default=None),
) -> RequestContext:
    """Owner from X-Owner-Id; offset from the tz_offset cookie, then the header.

    Blank or missing values fall back to the configured defaults.
    """
    owner_id = (x_owner_id or "").strip() or settings.default_owner_id
    raw_offset = tz_offset if tz_offset is not None else x_timezone_offset
    if raw_offset is None or not raw_offset.strip():
        offset_minutes = settings.default_offset_minutes
    else:
        offset_minutes = normalize_offset(raw_offset)
    return RequestContext(owner_id=owner_id, offset_minutes=offset_minutes)
