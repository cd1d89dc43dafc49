"""
Verification-code extraction service.

Builds the extraction prompt for a raw email and runs it through the
provider orchestrator inside a bounded retry loop:

  attempt n (0..max_retries-1)
    -> orchestrator.dispatch(prompt)
         on failure, and when the fallback policy allows it for attempt n,
         one direct call to the secondary provider
    -> strip ``` fences, parse JSON, validate
    -> success: ExtractionResult
    -> failure: sleep backoff * (n + 1), next attempt

ExtractionFailed is raised only after the last attempt fails.
"""

import asyncio
import json
import logging
import re
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from authinbox.config import SecondaryFallbackPolicy
from authinbox.models.extraction import ExtractionResult
from authinbox.services.ai_dispatch import (
    AllProvidersExhausted,
    NoCredentials,
    ProviderOrchestrator,
)
from authinbox.services.ai_providers import (
    CredentialPool,
    NormalizedResponse,
    ProviderCallError,
    ProviderClient,
)

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """\
Email content: {raw_email}

Read the email above and extract the following information:

1. Extract the verification code sent to the recipient.
   - If the code is for logging in / signing in (nearby phrases such as
     "login code", "sign-in code", "one-time sign-in code", "use XYZ to log in"),
     set "classification" to "LOGIN".
   - If the code is for resetting or changing a password, recovering or
     unlocking an account, set "classification" to "PASSWORD_RESET".
   - Any other verification code: set "classification" to "OTHER".
   - If several codes exist, prefer the login code.
2. Extract ONLY the sender email address:
   - FIRST look for a Resent-From header. If it is in the form
     "Name <email@example.com>", return only "email@example.com".
   - Otherwise use the From header, again returning only the address.
3. Give a brief summary of the email's topic (e.g. "account login verification").

Respond with ONLY valid JSON matching this structure:
{
  "title": "sender@example.com",
  "code": "123456",
  "topic": "account login verification",
  "classification": "LOGIN",
  "codeExist": 1
}

If there is no verification code, or this is an advertisement, respond with:
{
  "codeExist": 0
}
"""

# ```json ... ``` or bare ``` ... ```
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class MalformedResponse(Exception):
    """The model answered, but not with a valid extraction JSON object."""


class ExtractionFailed(Exception):
    """Raised after every extraction attempt failed."""
    def __init__(self, attempts: int, last_error: Optional[Exception]):
        super().__init__(
            f"Extraction failed after {attempts} attempt(s): {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


def build_extraction_prompt(raw_email: str) -> str:
    return EXTRACTION_PROMPT.replace("{raw_email}", raw_email)


def strip_code_fence(text: str) -> str:
    """Return the body of the first fenced code block, or the trimmed text."""
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def parse_extraction(text: str) -> ExtractionResult:
    """
    Parse the model's candidate text into an ExtractionResult.

    Raises:
        MalformedResponse: invalid JSON, a non-object value, or codeExist=1
            with title/code/topic missing or empty.
    """
    candidate = strip_code_fence(text)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Invalid JSON from model: {e}") from e

    if not isinstance(data, dict):
        raise MalformedResponse(f"Expected a JSON object, got {type(data).__name__}")

    try:
        return ExtractionResult.model_validate(data)
    except ValidationError as e:
        raise MalformedResponse(f"Invalid extraction data: {e}") from e


class CodeExtractor:
    """
    Retry controller around the provider orchestrator.

    Args:
        orchestrator: Rotation/fallback dispatcher.
        client: Used for the direct secondary-provider safety net.
        pool: Credential pool (to find the secondary credential).
        max_retries: Total attempts.
        backoff_seconds: Linear backoff base; attempt n waits backoff * (n + 1).
        fallback_policy: Which attempts get the direct secondary call.
        sleep: Awaitable delay, asyncio.sleep by default.
    """

    def __init__(
        self,
        orchestrator: ProviderOrchestrator,
        client: ProviderClient,
        pool: CredentialPool,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        fallback_policy: SecondaryFallbackPolicy = SecondaryFallbackPolicy.FIRST_ATTEMPT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.client = client
        self.pool = pool
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.fallback_policy = fallback_policy
        self.sleep = sleep

    def _secondary_net_allowed(self, attempt: int) -> bool:
        if not self.pool.has_secondary():
            return False
        if self.fallback_policy == SecondaryFallbackPolicy.EVERY_ATTEMPT:
            return True
        if self.fallback_policy == SecondaryFallbackPolicy.FIRST_ATTEMPT:
            return attempt == 0
        return False

    async def _request(self, prompt: str, attempt: int) -> NormalizedResponse:
        try:
            return await self.orchestrator.dispatch(prompt)
        except (AllProvidersExhausted, ProviderCallError) as e:
            if not self._secondary_net_allowed(attempt):
                raise
            logger.warning(
                f"Dispatch failed on attempt {attempt + 1} ({e}); "
                f"calling secondary provider directly"
            )
            return await self.client.call(prompt, self.pool.secondary)

    async def extract(self, prompt: str) -> ExtractionResult:
        """
        Run the prompt until a valid extraction result comes back.

        Returns:
            ExtractionResult, possibly with code_exists=False.

        Raises:
            NoCredentials: no provider is configured (no call is made).
            ExtractionFailed: every attempt failed.
        """
        if self.pool.is_empty():
            raise NoCredentials("No AI provider credentials configured")

        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = await self._request(prompt, attempt)
                logger.debug(
                    f"AI response attempt {attempt + 1} from {response.credential_label}: "
                    f"{response.text[:500]!r}"
                )
                result = parse_extraction(response.text)
                logger.info(
                    f"Extraction succeeded on attempt {attempt + 1} "
                    f"via {response.credential_label} (codeExist={int(result.code_exists)})"
                )
                return result
            except (AllProvidersExhausted, ProviderCallError, MalformedResponse) as e:
                last_error = e
                logger.error(f"Attempt {attempt + 1} failed: {e}")

            if attempt < self.max_retries - 1:
                await self.sleep(self.backoff_seconds * (attempt + 1))

        logger.error("Max retries reached. Unable to get valid AI response.")
        raise ExtractionFailed(self.max_retries, last_error)
