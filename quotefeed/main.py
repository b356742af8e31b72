from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from quotefeed.api.routes import router
from quotefeed.config.settings import Settings, get_settings
from quotefeed.integrations.demo_source import DemoQuoteSource
from quotefeed.integrations.http_source import HttpQuoteSource
from quotefeed.services.batch_resolver import BatchResolver
from quotefeed.services.quote_cache import QuoteCache
from quotefeed.services.quote_resolver import QuoteResolver
from quotefeed.services.quote_warmer import CacheWarmer
from quotefeed.services.rate_limiter import RateLimiter


def build_source(settings: Settings):
    if settings.QUOTE_SOURCE == "http":
        return HttpQuoteSource(settings.QUOTE_SOURCE_URL)
    return DemoQuoteSource()


def bind_services(app: FastAPI, settings: Settings, source=None) -> None:
    """Build the shared cache, limiter and resolvers for one process."""
    quote_cache = QuoteCache()
    rate_limiter = RateLimiter(settings.min_fetch_interval_sec)
    quote_resolver = QuoteResolver(
        quote_cache=quote_cache,
        rate_limiter=rate_limiter,
        source=source if source is not None else build_source(settings),
        ttl_sec=settings.cache_ttl_sec,
        timeout_sec=settings.fetch_timeout_sec,
    )
    batch_resolver = BatchResolver(resolver=quote_resolver)

    app.state.quote_cache = quote_cache
    app.state.rate_limiter = rate_limiter
    app.state.quote_resolver = quote_resolver
    app.state.batch_resolver = batch_resolver
    app.state.cache_warmer = None
    if settings.QUOTE_WARM_SYMBOLS:
        app.state.cache_warmer = CacheWarmer(
            batch_resolver=batch_resolver,
            symbols=settings.QUOTE_WARM_SYMBOLS,
            interval_sec=settings.QUOTE_WARM_INTERVAL_SEC,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    if getattr(app.state, "batch_resolver", None) is None:
        bind_services(app, settings)
    print(
        "[QUOTE][service_start] "
        f"source={settings.QUOTE_SOURCE} cache_ttl_ms={settings.QUOTE_CACHE_TTL_MS} "
        f"min_fetch_interval_ms={settings.QUOTE_MIN_FETCH_INTERVAL_MS}",
        flush=True,
    )
    warmer = app.state.cache_warmer
    if warmer is not None:
        warmer.start()

    try:
        yield
    finally:
        if warmer is not None:
            warmer.stop()


app = FastAPI(title="Quote Feed", version="0.1.0", lifespan=lifespan)
app.include_router(router)

# NOTE: services are bound in lifespan so app import does not require env.
app.state.get_settings = get_settings
