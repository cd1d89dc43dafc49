"""
AI provider call layer.

Holds the credential pool and a thin per-call client that sends one prompt
with one credential to one provider and returns the candidate text in a
provider-agnostic NormalizedResponse.

Vendor envelopes are handled by small adapter objects, one per vendor:

  gemini     primary.   POST {base}/models/{model}:generateContent
             text at candidates[0].content.parts[0].text
  openai     secondary. POST {base}/chat/completions (bearer auth)
             text at choices[0].message.content
  anthropic  secondary. Messages API via the anthropic SDK
             text at content[0].text

Failures are classified so the orchestrator can decide what to try next:

  RateLimited     quota exhausted for this credential (HTTP 429)
  ProviderError   any other HTTP-level failure, or a 2xx without text
  TransportError  no HTTP status obtained (connect error, timeout)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Sequence

import anthropic
import httpx

from authinbox.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-haiku-4-5"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ProviderCallError(Exception):
    """Base class for a failed call to one provider with one credential."""
    def __init__(self, message: str, credential_label: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.credential_label = credential_label


class RateLimited(ProviderCallError):
    """The provider reported quota exhaustion for the credential."""


class ProviderError(ProviderCallError):
    """The provider answered with a failure other than rate limiting."""
    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        credential_label: Optional[str] = None,
    ):
        super().__init__(message, credential_label)
        self.status = status


class TransportError(ProviderCallError):
    """The request failed before any HTTP status was obtained."""


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

class ProviderRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class Credential:
    """An API key tagged with the provider role it belongs to."""
    secret: str = field(repr=False)
    role: ProviderRole
    index: int = 0

    @property
    def label(self) -> str:
        """Log-safe identifier, e.g. "primary#2"."""
        return f"{self.role.value}#{self.index}"


class CredentialPool:
    """
    Read-only view over the configured credentials.

    An empty pool is a valid state; the orchestrator reports it as
    NoCredentials before making any call.
    """

    def __init__(self, primary_keys: Sequence[str] = (), secondary_key: Optional[str] = None):
        self._primaries = [
            Credential(secret=key, role=ProviderRole.PRIMARY, index=i)
            for i, key in enumerate(k for k in primary_keys if k)
        ]
        self._secondary = (
            Credential(secret=secondary_key, role=ProviderRole.SECONDARY)
            if secondary_key
            else None
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CredentialPool":
        return cls(settings.primary_api_keys, settings.secondary_api_key)

    def available_primaries(self) -> list[Credential]:
        return list(self._primaries)

    def has_secondary(self) -> bool:
        return self._secondary is not None

    @property
    def secondary(self) -> Optional[Credential]:
        return self._secondary

    def is_empty(self) -> bool:
        return not self._primaries and self._secondary is None


# ---------------------------------------------------------------------------
# Normalized response
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NormalizedResponse:
    """Candidate text returned by a provider, whichever vendor answered."""
    text: str
    provider: str
    credential_label: str


# ---------------------------------------------------------------------------
# Vendor adapters
# ---------------------------------------------------------------------------

class ProviderAdapter(Protocol):
    name: str

    async def send(self, prompt: str, api_key: str) -> str:
        """Send the prompt and return the candidate text."""
        ...


async def _post_json(
    http: httpx.AsyncClient,
    url: str,
    payload: dict,
    headers: dict,
    timeout: float,
    provider: str,
) -> dict:
    """POST a JSON payload and map failures onto the provider error taxonomy."""
    try:
        response = await http.post(url, json=payload, headers=headers, timeout=timeout)
    except httpx.TimeoutException as e:
        raise TransportError(f"{provider} request timed out: {e}") from e
    except httpx.RequestError as e:
        raise TransportError(f"{provider} request failed: {e}") from e

    if response.status_code == 429:
        raise RateLimited(f"{provider} rate limit exceeded")
    if response.status_code >= 300:
        raise ProviderError(
            f"{provider} API error {response.status_code}: {response.text[:200]}",
            status=response.status_code,
        )

    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(
            f"{provider} returned a non-JSON body", status=response.status_code
        ) from e


class GeminiAdapter:
    """Google Gemini generateContent API (primary provider)."""

    name = "gemini"

    def __init__(self, http: httpx.AsyncClient, model: str, base_url: str, timeout: float):
        self.http = http
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def send(self, prompt: str, api_key: str) -> str:
        # Keep the key out of the URL.
        data = await _post_json(
            self.http,
            f"{self.base_url}/models/{self.model}:generateContent",
            {"contents": [{"parts": [{"text": prompt}]}]},
            {"Content-Type": "application/json", "x-goog-api-key": api_key},
            self.timeout,
            self.name,
        )
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                "gemini response is missing candidates[0].content.parts[0].text",
                status=200,
            ) from e
        if not text:
            raise ProviderError("gemini response has empty text", status=200)
        return text


class OpenAIChatAdapter:
    """OpenAI-compatible chat completions API (secondary provider)."""

    name = "openai"

    def __init__(
        self,
        http: httpx.AsyncClient,
        model: str,
        base_url: str,
        timeout: float,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ):
        self.http = http
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def send(self, prompt: str, api_key: str) -> str:
        data = await _post_json(
            self.http,
            f"{self.base_url}/chat/completions",
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": self.temperature,
                "max_tokens": self.max_tokens,
            },
            {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            self.timeout,
            self.name,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                "openai response is missing choices[0].message.content", status=200
            ) from e
        if not content:
            raise ProviderError("openai response has empty content", status=200)
        return content


class AnthropicAdapter:
    """Anthropic Messages API through the official async SDK (secondary provider)."""

    name = "anthropic"

    def __init__(
        self,
        model: str,
        timeout: float,
        temperature: float = 0.1,
        max_tokens: int = 500,
    ):
        self.model = model
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def send(self, prompt: str, api_key: str) -> str:
        # Retries are owned by CodeExtractor.
        client = anthropic.AsyncAnthropic(
            api_key=api_key, timeout=self.timeout, max_retries=0
        )
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise RateLimited("anthropic rate limit exceeded") from e
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"anthropic API error {e.status_code}: {e.message}",
                status=e.status_code,
            ) from e
        except anthropic.APIConnectionError as e:
            raise TransportError(f"anthropic request failed: {e}") from e
        except anthropic.APIError as e:
            raise ProviderError(f"anthropic error: {e}") from e
        finally:
            await client.close()

        if not response.content or not getattr(response.content[0], "text", None):
            raise ProviderError("anthropic response has no text content", status=200)
        return response.content[0].text


# ---------------------------------------------------------------------------
# Provider client
# ---------------------------------------------------------------------------

class ProviderClient:
    """
    Performs exactly one provider call per call().

    Args:
        primary: Adapter used for PRIMARY credentials.
        secondary: Adapter used for the SECONDARY credential, if any.
    """

    def __init__(self, primary: ProviderAdapter, secondary: Optional[ProviderAdapter] = None):
        self._adapters = {ProviderRole.PRIMARY: primary}
        if secondary is not None:
            self._adapters[ProviderRole.SECONDARY] = secondary

    async def call(self, prompt: str, credential: Credential) -> NormalizedResponse:
        adapter = self._adapters.get(credential.role)
        if adapter is None:
            raise ProviderError(
                f"No adapter configured for {credential.role.value} provider",
                credential_label=credential.label,
            )

        try:
            text = await adapter.send(prompt, credential.secret)
        except ProviderCallError as e:
            e.credential_label = credential.label
            raise

        logger.debug(f"{adapter.name} answered for {credential.label}")
        return NormalizedResponse(
            text=text, provider=adapter.name, credential_label=credential.label
        )


def _build_openai(http: httpx.AsyncClient, settings: Settings) -> ProviderAdapter:
    return OpenAIChatAdapter(
        http,
        model=settings.secondary_model or DEFAULT_OPENAI_MODEL,
        base_url=settings.secondary_base_url,
        timeout=settings.ai_timeout_seconds,
        temperature=settings.secondary_temperature,
        max_tokens=settings.secondary_max_tokens,
    )


def _build_anthropic(http: httpx.AsyncClient, settings: Settings) -> ProviderAdapter:
    return AnthropicAdapter(
        model=settings.secondary_model or DEFAULT_ANTHROPIC_MODEL,
        timeout=settings.ai_timeout_seconds,
        temperature=settings.secondary_temperature,
        max_tokens=settings.secondary_max_tokens,
    )


_SECONDARY_BUILDERS = {
    "openai": _build_openai,
    "anthropic": _build_anthropic,
}


def build_provider_client(settings: Settings, http: httpx.AsyncClient) -> ProviderClient:
    """
    Wire the configured adapters into a ProviderClient.

    The secondary adapter is only built when SECONDARY_API_KEY is set.
    SECONDARY_PROVIDER itself is validated when Settings load.
    """
    primary = GeminiAdapter(
        http,
        model=settings.primary_model,
        base_url=settings.primary_base_url,
        timeout=settings.ai_timeout_seconds,
    )

    if not settings.secondary_api_key:
        return ProviderClient(primary)

    builder = _SECONDARY_BUILDERS[settings.secondary_provider]
    return ProviderClient(primary, builder(http, settings))
