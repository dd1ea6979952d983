"""Tests for provider fallback, caching and retry interplay."""

from __future__ import annotations

import pytest

from tether.core.cache import CacheTtlPolicy, ResponseCache
from tether.core.errors import ClientError, IntegrationUnavailable, NotFound, ServerError
from tether.core.result import Err, Ok
from tether.execution.batch import BatchExecutor
from tether.execution.retry import RetryPolicy
from tether.providers.base import ProviderResult, Situation
from tether.providers.orchestrator import INVALID_PROVIDER, FallbackOrchestrator

VALID_ID = "1012345678901"


class FakeProvider:
    """Scripted provider: each call pops the next answer (a result, None or an exception)."""

    def __init__(self, name: str, *answers, enabled: bool = True, default=None):
        self.name = name
        self.enabled = enabled
        self.answers = list(answers)
        self.default = default
        self.calls: list[str] = []

    async def fetch(self, identifier: str):
        self.calls.append(identifier)
        answer = self.answers.pop(0) if self.answers else self.default
        if isinstance(answer, Exception):
            raise answer
        if answer == "valid":
            return active(identifier, self.name)
        return answer


def active(identifier: str, provider: str) -> ProviderResult:
    return ProviderResult(identifier=identifier, valid=True, situation=Situation.ACTIVE, provider=provider)


@pytest.fixture
def cache(monotonic):
    return ResponseCache(clock=monotonic)


@pytest.fixture
def make_orchestrator(cache, fake_sleep):
    def _make(*providers, max_attempts: int = 3, ttl_policy: CacheTtlPolicy | None = None):
        return FallbackOrchestrator(
            providers,
            cache=cache,
            retry=RetryPolicy(max_attempts, sleep=fake_sleep),
            ttl_policy=ttl_policy or CacheTtlPolicy(positive_ttl=86_400, negative_ttl=3_600),
            batch=BatchExecutor(5, 0.5, sleep=fake_sleep),
        )

    return _make


class TestLookup:
    @pytest.mark.asyncio
    async def test_primary_answers(self, make_orchestrator):
        primary = FakeProvider("primary", "valid")
        secondary = FakeProvider("secondary", "valid")
        result = await make_orchestrator(primary, secondary).lookup(VALID_ID)
        assert result.valid
        assert result.provider == "primary"
        assert secondary.calls == []

    @pytest.mark.asyncio
    async def test_cache_hit_skips_providers(self, make_orchestrator):
        primary = FakeProvider("primary", default="valid")
        orchestrator = make_orchestrator(primary)
        first = await orchestrator.lookup(VALID_ID)
        second = await orchestrator.lookup("10.123.4567.890-1")
        assert first == second
        assert primary.calls == [VALID_ID]

    @pytest.mark.asyncio
    async def test_positive_ttl_expiry(self, make_orchestrator, monotonic):
        primary = FakeProvider("primary", default="valid")
        orchestrator = make_orchestrator(primary)
        await orchestrator.lookup(VALID_ID)
        monotonic.advance(86_400)
        await orchestrator.lookup(VALID_ID)
        assert len(primary.calls) == 1
        monotonic.advance(1)
        await orchestrator.lookup(VALID_ID)
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_force_refresh(self, make_orchestrator):
        primary = FakeProvider("primary", default="valid")
        orchestrator = make_orchestrator(primary)
        await orchestrator.lookup(VALID_ID)
        await orchestrator.lookup(VALID_ID, force_refresh=True)
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_negative_falls_through_to_secondary(self, make_orchestrator):
        primary = FakeProvider("primary", None)
        secondary = FakeProvider("secondary", "valid")
        result = await make_orchestrator(primary, secondary).lookup(VALID_ID)
        assert result.provider == "secondary"
        assert primary.calls == [VALID_ID]
        assert secondary.calls == [VALID_ID]

    @pytest.mark.asyncio
    async def test_not_found_error_is_a_negative(self, make_orchestrator):
        primary = FakeProvider("primary", NotFound("no record"))
        secondary = FakeProvider("secondary", "valid")
        result = await make_orchestrator(primary, secondary).lookup(VALID_ID)
        assert result.provider == "secondary"

    @pytest.mark.asyncio
    async def test_all_negative_is_cached_not_found(self, make_orchestrator, monotonic):
        primary = FakeProvider("primary")
        secondary = FakeProvider("secondary")
        orchestrator = make_orchestrator(primary, secondary)
        result = await orchestrator.lookup(VALID_ID)
        assert not result.valid
        assert result.situation is Situation.NOT_FOUND

        await orchestrator.lookup(VALID_ID)
        assert len(primary.calls) == 1
        monotonic.advance(3_601)
        await orchestrator.lookup(VALID_ID)
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_invalid_result_uses_negative_ttl(self, make_orchestrator, monotonic):
        cancelled = ProviderResult(
            identifier=VALID_ID, valid=False, situation=Situation.CANCELLED, provider="primary"
        )
        primary = FakeProvider("primary", default=cancelled)
        orchestrator = make_orchestrator(primary)
        await orchestrator.lookup(VALID_ID)
        monotonic.advance(3_601)
        await orchestrator.lookup(VALID_ID)
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_disabled_provider_skipped(self, make_orchestrator):
        primary = FakeProvider("primary", "valid", enabled=False)
        secondary = FakeProvider("secondary", "valid")
        result = await make_orchestrator(primary, secondary).lookup(VALID_ID)
        assert result.provider == "secondary"
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_invalid_identifier_never_reaches_providers(self, make_orchestrator):
        primary = FakeProvider("primary", default="valid")
        result = await make_orchestrator(primary).lookup("not a number")
        assert not result.valid
        assert result.provider == INVALID_PROVIDER
        assert primary.calls == []

    @pytest.mark.asyncio
    async def test_invalid_identifiers_do_not_evict_cached_lookups(self, monotonic, fake_sleep):
        primary = FakeProvider("primary", default="valid")
        cache = ResponseCache(max_size=2, clock=monotonic)
        orchestrator = FallbackOrchestrator(
            [primary], cache=cache, retry=RetryPolicy(sleep=fake_sleep)
        )

        await orchestrator.lookup(VALID_ID)
        for garbage in ("abc", "xyz", "abc", "12345678901234"):
            result = await orchestrator.lookup(garbage)
            assert result.provider == INVALID_PROVIDER
        await orchestrator.lookup(VALID_ID)

        assert primary.calls == [VALID_ID]
        assert len(cache) == 1
        assert orchestrator.cache_key(VALID_ID) in cache


class TestFailures:
    @pytest.mark.asyncio
    async def test_outage_propagates_without_fallback(self, make_orchestrator, cache, fake_sleep):
        down = [ServerError("503", http_status=503) for _ in range(3)]
        primary = FakeProvider("primary", *down)
        secondary = FakeProvider("secondary", "valid")
        orchestrator = make_orchestrator(primary, secondary, max_attempts=2)

        with pytest.raises(IntegrationUnavailable):
            await orchestrator.lookup(VALID_ID)

        assert len(primary.calls) == 2
        assert secondary.calls == []
        assert orchestrator.cache_key(VALID_ID) not in cache
        assert fake_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_transient_then_recovered(self, make_orchestrator):
        primary = FakeProvider("primary", ServerError("502", http_status=502), "valid")
        result = await make_orchestrator(primary).lookup(VALID_ID)
        assert result.valid
        assert len(primary.calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_is_terminal(self, make_orchestrator):
        primary = FakeProvider("primary", ClientError("bad", http_status=400))
        secondary = FakeProvider("secondary", "valid")
        with pytest.raises(ClientError):
            await make_orchestrator(primary, secondary).lookup(VALID_ID)
        assert len(primary.calls) == 1
        assert secondary.calls == []

    def test_requires_a_provider(self):
        with pytest.raises(ValueError):
            FallbackOrchestrator([])


class TestBatchAndInvalidate:
    @pytest.mark.asyncio
    async def test_lookup_many_settles_each_item(self, make_orchestrator):
        class Picky(FakeProvider):
            async def fetch(self, identifier):
                self.calls.append(identifier)
                if identifier.endswith("7"):
                    raise ClientError("rejected", http_status=422)
                return active(identifier, self.name)

        orchestrator = make_orchestrator(Picky("primary"))
        ids = [f"{n:013d}" for n in range(1, 13)]
        results = await orchestrator.lookup_many(ids)

        assert list(results) == ids
        assert isinstance(results["0000000000007"], Err)
        assert sum(isinstance(r, Ok) for r in results.values()) == 11

    @pytest.mark.asyncio
    async def test_lookup_batch_reports_windows(self, make_orchestrator, fake_sleep):
        orchestrator = make_orchestrator(FakeProvider("primary", default="valid"))
        report = await orchestrator.lookup_batch([f"{n:013d}" for n in range(6)])
        assert report.windows == [5, 1]
        assert fake_sleep.delays == [0.5]

    @pytest.mark.asyncio
    async def test_invalidate(self, make_orchestrator):
        primary = FakeProvider("primary", default="valid")
        orchestrator = make_orchestrator(primary)
        await orchestrator.lookup(VALID_ID)
        orchestrator.invalidate("10.123.4567.890-1")
        await orchestrator.lookup(VALID_ID)
        assert len(primary.calls) == 2
