"""
Notification artwork.
Album art often lives on the player's local http address, which a
notification surface may refuse to load, so the image is fetched here and
inlined as a data: URL. Any failure falls back to the bundled icon.
"""
import base64
import logging
from typing import Optional

import aiohttp

from sonos_relay.config.settings import settings
from sonos_relay.utils.http_client import ResourceFetchError, fetch_bytes

logger = logging.getLogger(__name__)


def to_data_url(content: bytes, content_type: str) -> str:
    mime = content_type if content_type.startswith("image/") else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(content).decode('ascii')}"


async def resolve_artwork(
    session: aiohttp.ClientSession,
    image_url: Optional[str],
    fallback_url: str = settings.DEFAULT_ICON_URL,
    timeout: float = settings.ARTWORK_TIMEOUT_SECONDS,
) -> str:
    if not image_url:
        return fallback_url
    try:
        content, content_type = await fetch_bytes(session, image_url, timeout=timeout)
    except ResourceFetchError as exc:
        logger.warning(
            "Could not fetch artwork, using fallback",
            extra={"url": image_url[:120], "error": str(exc)},
        )
        return fallback_url
    if not content:
        return fallback_url
    return to_data_url(content, content_type)
