"""Outbound HTTP for webhook deliveries.

WebhookSender is the seam the manager depends on; AiohttpWebhookSender is the
production implementation. Transport failures (DNS, refused connection,
timeouts, redirect loops) raise DeliveryError. Any HTTP response, whatever
its status, is returned for the manager to judge.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp

from core.errors import DeliveryError
from core.observability.logging import get_logger


logger = get_logger(__name__)

MAX_RESPONSE_BODY = 64 * 1024


@dataclass
class WebhookResponse:
    status: int
    body: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class WebhookSender(ABC):
    """Sends one webhook request."""

    @abstractmethod
    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[bytes],
        timeout: float,
    ) -> WebhookResponse:
        pass

    async def close(self) -> None:
        pass


class AiohttpWebhookSender(WebhookSender):
    """aiohttp-backed sender with one shared ClientSession.

    TLS certificates are verified (aiohttp default). Redirects are followed up
    to `max_redirects`.
    """

    def __init__(self, connect_timeout: float = 10, max_redirects: int = 3):
        self.connect_timeout = connect_timeout
        self.max_redirects = max_redirects
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[bytes],
        timeout: float,
    ) -> WebhookResponse:
        session = await self._get_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout, connect=self.connect_timeout)
        try:
            async with session.request(
                method,
                url,
                data=body,
                headers=headers,
                timeout=client_timeout,
                allow_redirects=True,
                max_redirects=self.max_redirects,
            ) as response:
                raw = await response.content.read(MAX_RESPONSE_BODY)
                return WebhookResponse(
                    status=response.status,
                    body=raw.decode("utf-8", errors="replace"),
                )
        except aiohttp.TooManyRedirects as e:
            raise DeliveryError(f"Too many redirects (max {self.max_redirects}): {e}")
        except asyncio.TimeoutError:
            raise DeliveryError(f"Request timed out after {timeout}s")
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Request failed: {type(e).__name__}: {e}")

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
            logger.debug("Webhook HTTP session closed")
        self._session = None
