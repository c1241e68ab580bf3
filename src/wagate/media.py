"""
Fetch media by URL for outgoing media messages.
"""

import base64
import posixpath
from typing import Optional
from urllib.parse import unquote, urlsplit

import httpx

from wagate.logger import get_logger
from wagate.sessions.base import MediaPayload
from wagate.sessions.errors import MediaFetchFailed

logger = get_logger(__name__)

DEFAULT_MIMETYPE = "image/jpeg"
DEFAULT_FILENAME = "image.jpg"


def filename_from_url(url: str) -> str:
    """Last path segment of the URL, without query string."""
    name = posixpath.basename(unquote(urlsplit(url).path))
    return name or DEFAULT_FILENAME


def sniff_mimetype(content_type: Optional[str]) -> str:
    """Strip parameters from a content-type header, with a JPEG fallback."""
    if not content_type:
        return DEFAULT_MIMETYPE
    mimetype = content_type.split(";", 1)[0].strip().lower()
    return mimetype or DEFAULT_MIMETYPE


async def fetch_media(
    url: str,
    *,
    timeout: float = 20.0,
    max_bytes: int = 16 * 1024 * 1024,
    client: Optional[httpx.AsyncClient] = None,
) -> MediaPayload:
    """
    Download a URL and wrap it as a base64 MediaPayload.

    Args:
        url: Source URL (http/https).
        timeout: Request timeout in seconds.
        max_bytes: Reject bodies larger than this.
        client: Optional shared client; a short-lived one is used otherwise.

    Raises:
        MediaFetchFailed: On network errors, non-2xx responses or oversize bodies.
    """
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    try:
        chunks = []
        size = 0
        async with client.stream("GET", url) as response:
            if response.status_code >= 400:
                raise MediaFetchFailed(url, f"HTTP {response.status_code}")
            content_type = response.headers.get("content-type")
            async for chunk in response.aiter_bytes():
                size += len(chunk)
                if size > max_bytes:
                    raise MediaFetchFailed(url, f"body exceeds {max_bytes} bytes")
                chunks.append(chunk)
    except httpx.HTTPError as e:
        logger.warning(f"Media fetch failed for {url}: {e}")
        raise MediaFetchFailed(url, str(e) or e.__class__.__name__) from e
    finally:
        if owns_client:
            await client.aclose()

    logger.debug(f"Fetched {size} bytes of media from {url}")
    return MediaPayload(
        mimetype=sniff_mimetype(content_type),
        data=base64.b64encode(b"".join(chunks)).decode("ascii"),
        filename=filename_from_url(url),
    )
