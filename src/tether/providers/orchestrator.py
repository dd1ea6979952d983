"""
Provider fallback orchestrator for registry lookups.

Manifesto:
    Fallback exists for *clean negatives*, not for outages. When the
    preferred backend says "I have no record", the secondary backend may
    still have one. When the preferred backend is down, asking the next one
    would hide the outage and cache a possibly wrong answer, so transport
    failures propagate and nothing is cached.

Architecture:
    ::

        lookup(identifier)
          │
          ├─ normalize_identifier ── invalid ──► NOT_FOUND (never cached)
          │
          ├─ cache.get(key) ──────── hit ──────► cached ProviderResult
          │
          ├─ for provider in providers (enabled only):
          │     retry.run(provider.fetch) ── raises ──► propagate, no cache
          │        │
          │        ├─ None / NotFound ──► next provider
          │        └─ ProviderResult  ──► cache(ttl by validity), return
          │
          └─ all negative ───────────────────► NOT_FOUND (cached short)

Examples:
    >>> orchestrator = FallbackOrchestrator([accelerator, public], cache=cache)
    >>> result = await orchestrator.lookup("10.123.4567.890-1")
    >>> result.valid, result.provider
    (True, 'registry.accelerator')

Tags:
    fallback, orchestration, cache, retry, registry, tether
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from tether.core.cache import CacheTtlPolicy, ResponseCache
from tether.core.errors import NotFound
from tether.core.logging import get_logger
from tether.core.result import Result
from tether.execution.batch import BatchExecutor, BatchReport
from tether.execution.retry import RetryPolicy
from tether.providers.base import ProviderResult, RegistryProvider, normalize_identifier

logger = get_logger(__name__)

INVALID_PROVIDER = "validation"


class FallbackOrchestrator:
    """Ordered fallback across registry providers with caching and retry.

    Args:
        providers: Backends in preference order; disabled ones are skipped
        cache: Shared response cache
        retry: Retry policy wrapping each provider call
        ttl_policy: Positive/negative TTLs
        batch: Executor used by :meth:`lookup_many`
        namespace: Cache key prefix
    """

    def __init__(
        self,
        providers: Sequence[RegistryProvider],
        *,
        cache: ResponseCache | None = None,
        retry: RetryPolicy | None = None,
        ttl_policy: CacheTtlPolicy | None = None,
        batch: BatchExecutor | None = None,
        namespace: str = "registry",
    ):
        if not providers:
            raise ValueError("at least one provider is required")
        self.providers = list(providers)
        self.cache = cache if cache is not None else ResponseCache()
        self.retry = retry or RetryPolicy()
        self.ttl_policy = ttl_policy or CacheTtlPolicy()
        self.batch = batch or BatchExecutor()
        self.namespace = namespace

    def cache_key(self, identifier: str) -> str:
        return f"{self.namespace}:{identifier}"

    async def lookup(self, identifier: str, *, force_refresh: bool = False) -> ProviderResult:
        """Resolve one identifier to a canonical result.

        Raises:
            IntegrationUnavailable: a provider kept failing transiently
            ClientError: a provider rejected the request
        """
        normalized = normalize_identifier(identifier)
        if normalized is None:
            logger.info("registry.lookup.invalid_identifier", identifier=identifier)
            return ProviderResult.not_found(identifier, provider=INVALID_PROVIDER)

        key = self.cache_key(normalized)
        if not force_refresh:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("registry.lookup.cache_hit", identifier=normalized)
                return cached

        for provider in self.providers:
            if not provider.enabled:
                continue
            answer = await self._fetch(provider, normalized)
            if answer is None:
                logger.info(
                    "registry.lookup.provider_negative",
                    identifier=normalized,
                    provider=provider.name,
                )
                continue
            ttl = self.ttl_policy.ttl_for(answer.valid)
            self.cache.set(key, answer, ttl)
            logger.info(
                "registry.lookup.resolved",
                identifier=normalized,
                provider=answer.provider,
                situation=answer.situation.value,
                ttl=ttl,
            )
            return answer

        result = ProviderResult.not_found(normalized)
        self.cache.set(key, result, self.ttl_policy.negative_ttl)
        logger.info("registry.lookup.not_found", identifier=normalized)
        return result

    async def _fetch(self, provider: RegistryProvider, identifier: str) -> ProviderResult | None:
        try:
            return await self.retry.run(lambda: provider.fetch(identifier))
        except NotFound:
            return None

    async def lookup_batch(self, identifiers: Iterable[str]) -> BatchReport[str, ProviderResult]:
        """Look up many identifiers through the batch executor."""
        return await self.batch.run(identifiers, self.lookup)

    async def lookup_many(self, identifiers: Iterable[str]) -> dict[str, Result[ProviderResult]]:
        """``{identifier: Ok(result) | Err(error)}`` with one entry per distinct input."""
        report = await self.lookup_batch(identifiers)
        return report.results

    def invalidate(self, identifier: str) -> None:
        normalized = normalize_identifier(identifier)
        if normalized is not None:
            self.cache.delete(self.cache_key(normalized))


__all__ = ["FallbackOrchestrator"]
