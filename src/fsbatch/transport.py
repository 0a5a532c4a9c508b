import asyncio
from typing import Optional, Protocol, runtime_checkable

import aiohttp
from loguru import logger

from fsbatch.errors import TransportError


@runtime_checkable
class Transport(Protocol):
    async def get(self, url: str) -> tuple[int, bytes]: ...


class HttpTransport:
    def __init__(self, timeout_seconds: Optional[float] = None):
        self.timeout_seconds = timeout_seconds

    def _get_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.timeout_seconds)

    async def get(self, url: str) -> tuple[int, bytes]:
        """GET ``url`` and return the status with the fully read body."""
        try:
            async with aiohttp.ClientSession(timeout=self._get_timeout()) as session:
                async with session.get(url) as response:
                    body = await response.read()
                    logger.debug(f"GET {url} -> {response.status} ({len(body)} bytes)")
                    return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(f"GET {url} failed: {e}") from e
