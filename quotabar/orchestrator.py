"""
Fetch orchestration: resolve a provider's strategy chain for the requested
source mode and run it with fallback.
"""

import asyncio
import logging

from .errors import APIError, NoStrategyAvailable, UsageError
from .models import FetchAttempt, FetchContext, FetchKind, FetchResult, SourceMode
from .strategy import FetchStrategy, ProviderDescriptor

log = logging.getLogger(__name__)

_MODE_KIND = {
    SourceMode.CLI: FetchKind.CLI,
    SourceMode.WEB: FetchKind.WEB,
    SourceMode.API: FetchKind.API_TOKEN,
    SourceMode.OAUTH: FetchKind.OAUTH,
}


def resolve_strategies(descriptor: ProviderDescriptor, mode: SourceMode) -> list[FetchStrategy]:
    """``auto`` keeps the full preference order, any other mode keeps only its kind."""
    mode = SourceMode(mode)
    if mode == SourceMode.AUTO:
        return list(descriptor.strategies)
    return [s for s in descriptor.strategies if s.kind == _MODE_KIND[mode]]


async def fetch(provider, context: FetchContext) -> FetchResult:
    """Run the strategies for ``provider`` one at a time until one succeeds.

    ``provider`` is a ProviderDescriptor or a registered provider id.
    Exactly one of the result's snapshot and error is set.
    """
    if isinstance(provider, str):
        from .providers import get_provider
        provider = get_provider(provider)

    strategies = resolve_strategies(provider, context.source_mode)
    attempts: list[FetchAttempt] = []
    last_error: Exception | None = None
    last_strategy: str | None = None

    for strategy in strategies:
        try:
            available = strategy.is_available(context)
        except Exception as e:
            log.warning("%s availability check failed: %s", strategy.id, e)
            available = False
        if not available:
            log.debug("%s: %s unavailable, skipping", provider.id, strategy.id)
            attempts.append(FetchAttempt(strategy.id, strategy.kind, False))
            continue

        log.debug("%s: trying %s", provider.id, strategy.id)
        try:
            snapshot = await strategy.fetch(context)
        except UsageError as e:
            error: Exception = e
        except Exception as e:
            log.exception("%s: %s raised unexpectedly", provider.id, strategy.id)
            error = APIError(detail=f"{type(e).__name__}: {e}")
        else:
            attempts.append(FetchAttempt(strategy.id, strategy.kind, True))
            log.info("%s: fetched via %s", provider.id, strategy.id)
            return FetchResult(provider.id, snapshot=snapshot, source_label=strategy.source_label,
                               strategy_id=strategy.id, attempts=tuple(attempts))

        attempts.append(FetchAttempt(strategy.id, strategy.kind, True, error))
        last_error, last_strategy = error, strategy.id
        if not strategy.should_fallback(error, context):
            log.info("%s: %s failed (%s), not falling back", provider.id, strategy.id, error)
            break
        log.info("%s: %s failed (%s), falling back", provider.id, strategy.id, error)

    if last_error is None:
        last_error = NoStrategyAvailable(
            f"No {context.source_mode.value} fetch strategy is available for {provider.display_name}.")
    return FetchResult(provider.id, error=last_error, strategy_id=last_strategy,
                       attempts=tuple(attempts))


async def fetch_all(contexts: list[FetchContext]) -> list[FetchResult]:
    """Fetch several providers concurrently, one context per provider."""
    return list(await asyncio.gather(*(fetch(c.provider, c) for c in contexts)))
