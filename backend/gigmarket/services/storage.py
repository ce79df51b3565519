"""Chat image uploads to object storage.

Files go to ``<storage_url>/storage/v1/object/<bucket>/<path>`` with the
service key; the returned public URL is what messages store as
``attachment_url``.
"""

import logging
import re
import time

import httpx
from fastapi import HTTPException, Request, status
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from gigmarket.core.config import settings

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str | None) -> str:
    name = _UNSAFE_CHARS.sub("-", (filename or "").rsplit("/", 1)[-1]).strip("-.")
    return name or "image"


def object_path(conversation_id: int, filename: str | None, now: float | None = None) -> str:
    millis = int((now if now is not None else time.time()) * 1000)
    return f"conversations/{conversation_id}/{millis}-{safe_filename(filename)}"


def public_url(path: str) -> str:
    base = (settings.storage_public_url or settings.storage_url).rstrip("/")
    return f"{base}/storage/v1/object/public/{settings.storage_bucket}/{path}"


def _too_large() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"Please upload an image smaller than "
        f"{settings.max_attachment_bytes // (1024 * 1024)}MB",
    )


async def read_upload(request: Request) -> bytes:
    """Read a raw upload body, refusing it as soon as it passes the size cap.

    A declared ``Content-Length`` over the cap is refused before any read.
    """
    limit = settings.max_attachment_bytes
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise _too_large()

    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise _too_large()
        chunks.append(chunk)
    return b"".join(chunks)


def validate_image(content_type: str | None, size: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Please upload an image file",
        )
    if size == 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Uploaded file is empty",
        )
    if size > settings.max_attachment_bytes:
        raise _too_large()


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
async def _put_object(path: str, body: bytes, content_type: str) -> None:
    url = f"{settings.storage_url.rstrip('/')}/storage/v1/object/{settings.storage_bucket}/{path}"
    headers = {
        "Authorization": f"Bearer {settings.storage_service_key}",
        "Content-Type": content_type,
        "x-upsert": "false",
    }
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.post(url, content=body, headers=headers)
        resp.raise_for_status()


async def upload_image(
    conversation_id: int, filename: str | None, content_type: str | None, body: bytes
) -> str:
    """Upload a chat image and return its public URL."""
    validate_image(content_type, len(body))
    if not settings.storage_url:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Attachment storage is not configured",
        )

    path = object_path(conversation_id, filename)
    try:
        await _put_object(path, body, content_type)
    except httpx.HTTPError as exc:
        logger.exception("Attachment upload failed: %s", path)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to upload image. Please try again.",
        ) from exc

    logger.info("Attachment uploaded", extra={"conversation_id": conversation_id, "path": path})
    return public_url(path)
