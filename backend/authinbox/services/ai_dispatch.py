"""
Rotation and fallback across AI provider credentials.

dispatch() picks a primary credential by a time-derived rotation cursor,
walks the remaining primaries in index order when that one fails, and
escalates to the secondary provider once every primary has failed.

The cursor is floor(now / 60s) mod N: every invocation within the same
minute starts on the same key, and successive minutes spread load across
all keys even when nothing fails. No state is shared between invocations.
"""

import logging
import time
from typing import Callable

from authinbox.services.ai_providers import (
    CredentialPool,
    NormalizedResponse,
    ProviderCallError,
    ProviderClient,
    RateLimited,
)

logger = logging.getLogger(__name__)

_ROTATION_BUCKET_SECONDS = 60


class NoCredentials(Exception):
    """Raised when neither a primary nor a secondary credential is configured."""


class AllProvidersExhausted(Exception):
    """
    Raised when every primary credential failed and no secondary exists.

    failures holds (credential_label, error) pairs in the order tried.
    """
    def __init__(self, failures: list[tuple[str, ProviderCallError]]):
        tried = ", ".join(label for label, _ in failures) or "none"
        super().__init__(f"All AI providers exhausted (tried: {tried})")
        self.failures = failures


def rotation_cursor(count: int, now: float) -> int:
    """Index of the primary credential to try first at wall-clock time now."""
    return int(now // _ROTATION_BUCKET_SECONDS) % count


class ProviderOrchestrator:
    """
    Composes the credential pool and the provider client.

    Args:
        pool: Configured credentials.
        client: Performs a single provider call.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        pool: CredentialPool,
        client: ProviderClient,
        clock: Callable[[], float] = time.time,
    ):
        self.pool = pool
        self.client = client
        self.clock = clock

    async def dispatch(self, prompt: str) -> NormalizedResponse:
        """
        Send the prompt to the first provider that answers.

        Raises:
            NoCredentials: the pool is empty; no call was made.
            AllProvidersExhausted: every primary failed and there is no secondary.
            ProviderCallError: the secondary provider failed.
        """
        primaries = self.pool.available_primaries()
        if not primaries and not self.pool.has_secondary():
            raise NoCredentials("No AI provider credentials configured")

        failures: list[tuple[str, ProviderCallError]] = []

        if primaries:
            start = rotation_cursor(len(primaries), self.clock())
            order = [start] + [i for i in range(len(primaries)) if i != start]

            for index in order:
                credential = primaries[index]
                try:
                    response = await self.client.call(prompt, credential)
                except RateLimited as e:
                    logger.warning(f"{credential.label} is rate limited: {e}")
                    failures.append((credential.label, e))
                    continue
                except ProviderCallError as e:
                    logger.warning(f"{credential.label} failed: {e}")
                    failures.append((credential.label, e))
                    continue

                if failures:
                    logger.info(
                        f"{credential.label} answered after {len(failures)} failed primary attempt(s)"
                    )
                return response

        if self.pool.has_secondary():
            if primaries:
                logger.warning(
                    f"All {len(primaries)} primary credential(s) failed; escalating to secondary provider"
                )
            return await self.client.call(prompt, self.pool.secondary)

        raise AllProvidersExhausted(failures)
