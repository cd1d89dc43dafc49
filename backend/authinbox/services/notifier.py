"""
Bark push notifications.

One GET per device token:

    {bark_url}/{token}/{url-encoded title}/{url-encoded body}

All tokens are notified concurrently. A failing token is logged and
reported as False; it never affects the other tokens or the caller.
"""

import asyncio
import logging
from typing import Sequence
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)


def _mask(token: str) -> str:
    return f"{token[:4]}…" if len(token) > 4 else "…"


class BarkNotifier:
    def __init__(
        self,
        http: httpx.AsyncClient,
        base_url: str,
        tokens: Sequence[str],
        timeout: float = 10.0,
    ):
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.tokens = list(tokens)
        self.timeout = timeout

    async def notify(self, token: str, title: str, body: str) -> bool:
        """Send one notification; returns True on a 2xx answer."""
        url = f"{self.base_url}/{token}/{quote(title, safe='')}/{quote(body, safe='')}"
        try:
            response = await self.http.get(url, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"Bark notification error for token {_mask(token)}: {e}")
            return False

        if response.is_success:
            logger.info(f"Successfully sent notification to Bark for token {_mask(token)}")
            return True

        logger.error(
            f"Failed to send notification to Bark for token {_mask(token)}: {response.status_code}"
        )
        return False

    async def notify_all(self, title: str, body: str) -> dict[str, bool]:
        """
        Notify every configured token concurrently.

        Returns:
            Mapping of token -> delivered.
        """
        if not self.tokens:
            logger.warning("Bark is enabled but no tokens are configured")
            return {}

        results = await asyncio.gather(
            *(self.notify(token, title, body) for token in self.tokens),
            return_exceptions=True,
        )

        delivered: dict[str, bool] = {}
        for token, result in zip(self.tokens, results):
            if isinstance(result, BaseException):
                logger.error(f"Bark notification crashed for token {_mask(token)}: {result}")
                delivered[token] = False
            else:
                delivered[token] = result
        return delivered
