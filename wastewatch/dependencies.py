from __future__ import annotations

import hmac
import logging

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel

from wastewatch.config import Settings
from wastewatch.models import ErrorCode

settings = Settings()
redis_client = redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


logger = logging.getLogger(__name__)

IP_LIMIT_PER_MINUTE = 30
USER_LIMIT_PER_MINUTE = 120


class ErrorResponse(BaseModel):
    code: str
    message: str


def error_detail(code: ErrorCode, message: str) -> dict:
    return ErrorResponse(code=code.value, message=message).model_dump()


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: int | None = Header(None, alias="X-User-ID"),
) -> int:
    """Return the user id established by the upstream identity layer."""
    if x_api_ver != "v1":
        raise HTTPException(
            status_code=426,
            detail={"code": "UPGRADE_REQUIRED", "message": "Invalid API version"},
        )

    if not hmac.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(
            status_code=401, detail=error_detail(ErrorCode.UNAUTHORIZED, "Invalid API key")
        )

    if x_user_id is None:
        raise HTTPException(
            status_code=401, detail=error_detail(ErrorCode.UNAUTHORIZED, "Missing user ID")
        )

    return x_user_id


async def require_moderator(
    x_moderator_key: str | None = Header(None, alias="X-Moderator-Key"),
) -> None:
    if not x_moderator_key or not hmac.compare_digest(
        x_moderator_key, settings.moderator_key
    ):
        raise HTTPException(
            status_code=403,
            detail=error_detail(ErrorCode.FORBIDDEN, "Moderator access required"),
        )


async def rate_limit(request: Request, user_id: int = Depends(require_api_headers)) -> int:
    """Throttle requests by IP and user via Redis."""
    client_host = request.client.host if request.client else ""
    ip = client_host
    xff = request.headers.get("X-Forwarded-For")
    if xff and client_host in settings.trusted_proxies:
        forwarded = [h.strip() for h in xff.split(",") if h.strip()]
        proxies = forwarded[1:] + [client_host]
        if all(p in settings.trusted_proxies for p in proxies):
            ip = forwarded[0]
    ip_key = f"rate:ip:{ip}"
    user_key = f"rate:user:{user_id}"

    try:
        pipe = redis_client.pipeline()
        pipe.incr(ip_key)
        pipe.expire(ip_key, 60)
        pipe.incr(user_key)
        pipe.expire(user_key, 60)
        ip_count, _, user_count, _ = await pipe.execute()
    except RedisError as exc:
        logger.exception("Redis unavailable for rate limiting: %s", exc)
        raise HTTPException(
            status_code=503,
            detail=error_detail(ErrorCode.SERVICE_UNAVAILABLE, "Rate limiter unavailable"),
        ) from exc
    if ip_count > IP_LIMIT_PER_MINUTE or user_count > USER_LIMIT_PER_MINUTE:
        raise HTTPException(
            status_code=429,
            detail={"code": "TOO_MANY_REQUESTS", "message": "Rate limit exceeded"},
        )

    return user_id
