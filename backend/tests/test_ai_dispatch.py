"""
Tests for rotation and fallback across AI provider credentials.

The ProviderClient is replaced by a fake that records which credential was
used and fails for a configured set of labels.
"""

import pytest

from authinbox.services.ai_dispatch import (
    AllProvidersExhausted,
    NoCredentials,
    ProviderOrchestrator,
    rotation_cursor,
)
from authinbox.services.ai_providers import (
    CredentialPool,
    NormalizedResponse,
    ProviderError,
    RateLimited,
    TransportError,
)


class FakeClient:
    """Records calls; raises the configured error for a credential label."""

    def __init__(self, failures: dict | None = None):
        self.failures = failures or {}
        self.calls: list[str] = []

    async def call(self, prompt, credential):
        self.calls.append(credential.label)
        error = self.failures.get(credential.label)
        if error is not None:
            raise error
        return NormalizedResponse(
            text=f"ok from {credential.label}",
            provider="fake",
            credential_label=credential.label,
        )


def _clock(minute: int):
    return lambda: minute * 60 + 30.0


class TestRotationCursor:
    def test_same_minute_same_cursor(self):
        assert rotation_cursor(3, 600.0) == rotation_cursor(3, 659.9)

    def test_successive_minutes_cycle_through_keys(self):
        cursors = [rotation_cursor(3, minute * 60) for minute in range(6)]
        assert cursors == [0, 1, 2, 0, 1, 2]

    def test_single_key_always_zero(self):
        assert rotation_cursor(1, 123456.0) == 0


class TestDispatch:
    @pytest.mark.asyncio
    async def test_starts_at_rotation_cursor(self):
        client = FakeClient()
        pool = CredentialPool(["k0", "k1", "k2"], "s")
        orchestrator = ProviderOrchestrator(pool, client, clock=_clock(4))

        response = await orchestrator.dispatch("p")

        assert response.credential_label == "primary#1"
        assert client.calls == ["primary#1"]

    @pytest.mark.asyncio
    async def test_same_minute_picks_same_first_key(self):
        pool = CredentialPool(["k0", "k1", "k2"])
        first = FakeClient()
        second = FakeClient()
        await ProviderOrchestrator(pool, first, clock=lambda: 1205.0).dispatch("p")
        await ProviderOrchestrator(pool, second, clock=lambda: 1259.0).dispatch("p")
        assert first.calls == second.calls == ["primary#2"]

    @pytest.mark.asyncio
    async def test_rate_limited_key_falls_through_to_remaining_in_index_order(self):
        client = FakeClient({
            "primary#2": RateLimited("quota"),
            "primary#0": ProviderError("500", status=500),
        })
        pool = CredentialPool(["k0", "k1", "k2"], "s")
        orchestrator = ProviderOrchestrator(pool, client, clock=_clock(2))

        response = await orchestrator.dispatch("p")

        assert response.credential_label == "primary#1"
        assert client.calls == ["primary#2", "primary#0", "primary#1"]

    @pytest.mark.asyncio
    async def test_every_primary_tried_once_before_secondary(self):
        client = FakeClient({
            "primary#0": RateLimited("quota"),
            "primary#1": TransportError("down"),
            "primary#2": ProviderError("bad", status=400),
        })
        pool = CredentialPool(["k0", "k1", "k2"], "s")
        orchestrator = ProviderOrchestrator(pool, client, clock=_clock(1))

        response = await orchestrator.dispatch("p")

        assert response.credential_label == "secondary#0"
        assert client.calls == ["primary#1", "primary#0", "primary#2", "secondary#0"]

    @pytest.mark.asyncio
    async def test_all_primaries_fail_without_secondary(self):
        client = FakeClient({
            "primary#0": RateLimited("quota"),
            "primary#1": RateLimited("quota"),
        })
        orchestrator = ProviderOrchestrator(
            CredentialPool(["k0", "k1"]), client, clock=_clock(0)
        )

        with pytest.raises(AllProvidersExhausted) as exc_info:
            await orchestrator.dispatch("p")

        assert [label for label, _ in exc_info.value.failures] == ["primary#0", "primary#1"]
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_secondary_error_propagates(self):
        client = FakeClient({
            "primary#0": RateLimited("quota"),
            "secondary#0": ProviderError("secondary down", status=503),
        })
        orchestrator = ProviderOrchestrator(CredentialPool(["k0"], "s"), client)

        with pytest.raises(ProviderError) as exc_info:
            await orchestrator.dispatch("p")
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_secondary_only_pool(self):
        client = FakeClient()
        orchestrator = ProviderOrchestrator(CredentialPool([], "s"), client)

        response = await orchestrator.dispatch("p")

        assert response.credential_label == "secondary#0"
        assert client.calls == ["secondary#0"]

    @pytest.mark.asyncio
    async def test_empty_pool_fails_fast_without_calls(self):
        client = FakeClient()
        orchestrator = ProviderOrchestrator(CredentialPool([], None), client)

        with pytest.raises(NoCredentials):
            await orchestrator.dispatch("p")
        assert client.calls == []
