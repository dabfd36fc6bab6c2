import logging
import os
import re
from asyncio import Lock
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from uuid import uuid4

import aioboto3
from aiobotocore.client import AioBaseClient
from botocore.exceptions import BotoCoreError, ClientError

from wastewatch.config import Settings
from wastewatch.errors import StorageFailure


logger = logging.getLogger("s3")  # Logger for S3 interactions


BUCKET = os.getenv("S3_BUCKET", "wastewatch")
_settings: Settings | None = None

_client_ctx: AbstractAsyncContextManager[AioBaseClient] | None = None
_client: AioBaseClient | None = None
_client_lock: Lock = Lock()

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
}
_SAFE_EXT_RE = re.compile(r"^\.[a-z0-9]{1,5}$")


def _setting(env: str, attr: str, default: str | None = None) -> str | None:
    return os.getenv(
        env,
        getattr(_settings, attr) if _settings is not None else default,
    )


async def _make_client() -> AioBaseClient:
    session = aioboto3.Session()
    client_ctx = session.client(
        "s3",
        endpoint_url=_setting("S3_ENDPOINT", "s3_endpoint"),
        region_name=_setting("S3_REGION", "s3_region", "us-east-1"),
        aws_access_key_id=_setting("S3_ACCESS_KEY", "s3_access_key"),
        aws_secret_access_key=_setting("S3_SECRET_KEY", "s3_secret_key"),
    )
    try:
        client = await client_ctx.__aenter__()
    except Exception as exc:
        try:
            await client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client after failed entry")
        logger.exception("Failed to create S3 client: %s", exc)
        raise
    global _client_ctx
    _client_ctx = client_ctx
    return client


async def get_client() -> AioBaseClient:
    """Return a cached aioboto3 client, creating it if needed."""
    global _client
    if _client is not None:
        return _client

    async with _client_lock:
        if _client is None:
            _client = await _make_client()
        return _client


async def close_client() -> None:
    """Close the cached S3 client if it exists."""
    global _client, _client_ctx
    if _client_ctx is not None:
        try:
            await _client_ctx.__aexit__(None, None, None)
        except Exception:  # pragma: no cover - best effort cleanup
            logger.exception("Failed to close S3 client")
    _client = None
    _client_ctx = None


async def init_storage(cfg: Settings) -> None:
    """Store settings and reinitialize the client."""
    global _settings
    _settings = cfg
    await close_client()


def _bucket() -> str:
    return _setting("S3_BUCKET", "s3_bucket", BUCKET) or BUCKET


def build_key(user_id: int, suggested_name: str | None, content_type: str) -> str:
    """Return a collision-resistant object key.

    Only the extension of ``suggested_name`` is kept; the rest of the key is
    a timestamp plus a random UUID, so identical upload names never clash.
    """
    ext = os.path.splitext(suggested_name or "")[1].lower()
    if not _SAFE_EXT_RE.match(ext):
        ext = _EXTENSIONS.get(content_type, ".bin")
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"reports/{user_id}/{ts}-{uuid4().hex}{ext}"


async def store_image(
    user_id: int,
    data: bytes,
    suggested_name: str | None = None,
    content_type: str = "image/jpeg",
) -> str:
    """Upload bytes to S3 and return the object key."""
    key = build_key(user_id, suggested_name, content_type)
    try:
        client = await get_client()
        await client.put_object(
            Bucket=_bucket(), Key=key, Body=data, ContentType=content_type
        )
    except (BotoCoreError, ClientError) as exc:
        logger.exception("S3 upload failed for %s: %s", key, exc)
        raise StorageFailure("image upload failed") from exc
    return key


async def delete_image(key: str) -> bool:
    """Remove an uploaded object; returns False when S3 refused."""
    try:
        client = await get_client()
        await client.delete_object(Bucket=_bucket(), Key=key)
    except (BotoCoreError, ClientError) as exc:
        logger.warning("S3 delete failed for %s: %s", key, exc)
        return False
    return True


def get_public_url(key: str) -> str:
    """Return a public URL for the object."""
    bucket = _bucket()
    base = _setting("S3_PUBLIC_URL", "s3_public_url")
    if base:
        return f"{base.rstrip('/')}/{key}"

    endpoint = _setting("S3_ENDPOINT", "s3_endpoint")
    if endpoint:
        return f"{endpoint.rstrip('/')}/{bucket}/{key}"

    region = _setting("S3_REGION", "s3_region", "us-east-1")
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
