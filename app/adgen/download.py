"""
Binary downloads for reference and overlay images.
"""
import logging
from typing import Tuple

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"
DOWNLOAD_TIMEOUT = 30.0


async def download_binary(
    http: httpx.AsyncClient,
    url: str,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Tuple[bytes, str]:
    """
    Fetch `url` and return its body with the MIME type from Content-Type.

    Raises httpx.HTTPError on transport failures and non-2xx responses.
    """
    response = await http.get(url, timeout=timeout, follow_redirects=True)
    response.raise_for_status()

    content_type = response.headers.get("content-type", "")
    mime_type = content_type.split(";", 1)[0].strip() or DEFAULT_MIME_TYPE
    logger.debug(f"Downloaded {url} ({len(response.content)} bytes, {mime_type})")
    return response.content, mime_type
