"""
Shared async HTTP client with:
- Connection pooling and a total timeout
- Single-attempt byte fetches with a size cap (no retry)
"""
import asyncio
import logging
from typing import Optional

import aiohttp
from aiohttp import ClientSession, TCPConnector

from sonos_relay.config.settings import settings

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class ResourceFetchError(Exception):
    pass


class HttpError(ResourceFetchError):
    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"HTTP {status}: {message}")


def build_session() -> ClientSession:
    connector = TCPConnector(limit=20)
    timeout = aiohttp.ClientTimeout(total=settings.HTTP_TIMEOUT_SECONDS)
    return ClientSession(
        connector=connector,
        timeout=timeout,
        trust_env=False,
    )


async def fetch_bytes(
    session: ClientSession,
    url: str,
    *,
    timeout: float = settings.ARTWORK_TIMEOUT_SECONDS,
    max_bytes: int = settings.ARTWORK_MAX_BYTES,
    headers: Optional[dict] = None,
) -> tuple[bytes, str]:
    """GET a resource once. Returns (body, content_type)."""
    try:
        async with session.get(
            url,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise HttpError(resp.status, body[:200])
            if resp.content_length is not None and resp.content_length > max_bytes:
                raise ResourceFetchError(
                    f"Resource is {resp.content_length} bytes, limit is {max_bytes}"
                )
            chunks: list[bytes] = []
            received = 0
            async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
                received += len(chunk)
                if received > max_bytes:
                    raise ResourceFetchError(f"Resource exceeds {max_bytes} bytes")
                chunks.append(chunk)
            return b"".join(chunks), resp.content_type
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
        raise ResourceFetchError(f"Could not fetch {url[:120]}: {exc}") from exc
