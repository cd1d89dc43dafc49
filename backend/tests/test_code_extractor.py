"""
Unit tests for verification-code extraction with MOCKED providers.

The orchestrator and the direct provider client are AsyncMocks; the sleep
function is injected so backoff delays are recorded instead of waited on.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from authinbox.config import SecondaryFallbackPolicy
from authinbox.models.extraction import Classification
from authinbox.services.ai_dispatch import AllProvidersExhausted, NoCredentials
from authinbox.services.ai_providers import (
    CredentialPool,
    NormalizedResponse,
    ProviderError,
    RateLimited,
)
from authinbox.services.code_extractor import (
    CodeExtractor,
    ExtractionFailed,
    MalformedResponse,
    build_extraction_prompt,
    parse_extraction,
    strip_code_fence,
)


MOCK_LOGIN_RESPONSE = """{
  "title": "no-reply@example.com",
  "code": "04 74 22",
  "topic": "account login verification",
  "classification": "LOGIN",
  "codeExist": 1
}"""

MOCK_NO_CODE_RESPONSE = '{"codeExist": 0}'


def _response(text: str, label: str = "primary#0") -> NormalizedResponse:
    return NormalizedResponse(text=text, provider="fake", credential_label=label)


def _exhausted() -> AllProvidersExhausted:
    return AllProvidersExhausted([("primary#0", RateLimited("quota"))])


def _make_extractor(
    dispatch_side_effect,
    secondary_side_effect=None,
    pool: CredentialPool | None = None,
    max_retries: int = 3,
    policy: SecondaryFallbackPolicy = SecondaryFallbackPolicy.FIRST_ATTEMPT,
):
    orchestrator = MagicMock()
    orchestrator.dispatch = AsyncMock(side_effect=dispatch_side_effect)
    client = MagicMock()
    client.call = AsyncMock(side_effect=secondary_side_effect)
    sleep = AsyncMock()
    extractor = CodeExtractor(
        orchestrator,
        client,
        pool if pool is not None else CredentialPool(["k0"], "s"),
        max_retries=max_retries,
        backoff_seconds=1.0,
        fallback_policy=policy,
        sleep=sleep,
    )
    return extractor, orchestrator, client, sleep


# ---------------------------------------------------------------------------
# Prompt and parsing helpers
# ---------------------------------------------------------------------------

class TestPrompt:
    def test_embeds_raw_email(self):
        prompt = build_extraction_prompt("From: a@b.c\n\nYour code is 123456")
        assert "Your code is 123456" in prompt
        assert "{raw_email}" not in prompt

    def test_raw_email_with_braces_is_safe(self):
        prompt = build_extraction_prompt("body {with} braces")
        assert "body {with} braces" in prompt


class TestStripCodeFence:
    def test_json_fence(self):
        assert strip_code_fence('```json\n{"codeExist": 0}\n```') == '{"codeExist": 0}'

    def test_bare_fence(self):
        assert strip_code_fence('```\n{"codeExist": 0}\n```') == '{"codeExist": 0}'

    def test_fence_with_surrounding_prose(self):
        text = 'Here you go:\n```json\n{"codeExist": 0}\n```\nThanks'
        assert strip_code_fence(text) == '{"codeExist": 0}'

    def test_unfenced_text_is_trimmed(self):
        assert strip_code_fence('  {"codeExist": 0}\n') == '{"codeExist": 0}'


class TestParseExtraction:
    def test_login_code(self):
        result = parse_extraction(MOCK_LOGIN_RESPONSE)
        assert result.code_exists is True
        assert result.sender_address == "no-reply@example.com"
        assert result.code == "047422"
        assert result.classification == Classification.LOGIN

    def test_no_code(self):
        result = parse_extraction(MOCK_NO_CODE_RESPONSE)
        assert result.code_exists is False
        assert result.code is None

    def test_invalid_json(self):
        with pytest.raises(MalformedResponse):
            parse_extraction("not json at all")

    def test_non_object_json(self):
        with pytest.raises(MalformedResponse):
            parse_extraction("[1, 2, 3]")

    def test_code_exists_with_empty_code_is_rejected(self):
        with pytest.raises(MalformedResponse):
            parse_extraction('{"codeExist": 1, "title": "a@b.c", "code": "", "topic": "x"}')

    def test_code_exists_without_topic_is_rejected(self):
        with pytest.raises(MalformedResponse):
            parse_extraction('{"codeExist": 1, "title": "a@b.c", "code": "123"}')

    def test_unknown_classification_is_rejected(self):
        with pytest.raises(MalformedResponse):
            parse_extraction(
                '{"codeExist": 1, "title": "a@b.c", "code": "123", "topic": "x",'
                ' "classification": "ACCOUNT_RECOVERY"}'
            )

    def test_missing_code_exist_is_rejected(self):
        with pytest.raises(MalformedResponse):
            parse_extraction('{"title": "a@b.c", "code": "123", "topic": "x"}')


# ---------------------------------------------------------------------------
# CodeExtractor retry loop
# ---------------------------------------------------------------------------

class TestExtract:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        extractor, orchestrator, client, sleep = _make_extractor(
            [_response(MOCK_LOGIN_RESPONSE)]
        )

        result = await extractor.extract("prompt")

        assert result.code == "047422"
        orchestrator.dispatch.assert_awaited_once_with("prompt")
        client.call.assert_not_awaited()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fenced_response_is_accepted(self):
        extractor, *_ = _make_extractor(
            [_response(f"```json\n{MOCK_LOGIN_RESPONSE}\n```")]
        )
        result = await extractor.extract("prompt")
        assert result.code == "047422"

    @pytest.mark.asyncio
    async def test_malformed_then_valid_retries_with_backoff(self):
        extractor, orchestrator, _, sleep = _make_extractor(
            [_response("garbage"), _response(MOCK_NO_CODE_RESPONSE)]
        )

        result = await extractor.extract("prompt")

        assert result.code_exists is False
        assert orchestrator.dispatch.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_retry_bound_and_linear_backoff(self):
        extractor, orchestrator, _, sleep = _make_extractor(
            [_response("garbage")] * 3
        )

        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract("prompt")

        assert orchestrator.dispatch.await_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, MalformedResponse)
        # No sleep after the final attempt
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_empty_pool_raises_no_credentials_without_calls(self):
        extractor, orchestrator, client, _ = _make_extractor(
            [], pool=CredentialPool([], None)
        )

        with pytest.raises(NoCredentials):
            await extractor.extract("prompt")

        orchestrator.dispatch.assert_not_awaited()
        client.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_first_attempt_safety_net_calls_secondary(self):
        extractor, orchestrator, client, sleep = _make_extractor(
            [_exhausted()],
            secondary_side_effect=[_response(MOCK_LOGIN_RESPONSE, "secondary#0")],
        )

        result = await extractor.extract("prompt")

        assert result.code == "047422"
        client.call.assert_awaited_once()
        assert client.call.await_args.args[1].label == "secondary#0"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_safety_net_only_on_first_attempt_by_default(self):
        extractor, orchestrator, client, _ = _make_extractor(
            [_exhausted(), _exhausted(), _exhausted()],
            secondary_side_effect=ProviderError("secondary down", status=503),
        )

        with pytest.raises(ExtractionFailed):
            await extractor.extract("prompt")

        assert orchestrator.dispatch.await_count == 3
        assert client.call.await_count == 1

    @pytest.mark.asyncio
    async def test_every_attempt_policy(self):
        extractor, orchestrator, client, _ = _make_extractor(
            [_exhausted(), _exhausted(), _exhausted()],
            secondary_side_effect=ProviderError("secondary down", status=503),
            policy=SecondaryFallbackPolicy.EVERY_ATTEMPT,
        )

        with pytest.raises(ExtractionFailed):
            await extractor.extract("prompt")

        assert client.call.await_count == 3

    @pytest.mark.asyncio
    async def test_never_policy(self):
        extractor, orchestrator, client, _ = _make_extractor(
            [_exhausted(), _exhausted()],
            max_retries=2,
            policy=SecondaryFallbackPolicy.NEVER,
        )

        with pytest.raises(ExtractionFailed) as exc_info:
            await extractor.extract("prompt")

        client.call.assert_not_awaited()
        assert isinstance(exc_info.value.last_error, AllProvidersExhausted)

    @pytest.mark.asyncio
    async def test_no_safety_net_without_secondary_credential(self):
        extractor, orchestrator, client, _ = _make_extractor(
            [_exhausted()],
            pool=CredentialPool(["k0"], None),
            max_retries=1,
        )

        with pytest.raises(ExtractionFailed):
            await extractor.extract("prompt")

        client.call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_error_from_dispatch_is_retried(self):
        extractor, orchestrator, _, _ = _make_extractor(
            [ProviderError("secondary down", status=500), _response(MOCK_NO_CODE_RESPONSE)],
            secondary_side_effect=ProviderError("still down", status=500),
        )

        result = await extractor.extract("prompt")

        assert result.code_exists is False
        assert orchestrator.dispatch.await_count == 2
