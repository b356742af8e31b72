from fastapi import APIRouter, HTTPException, Request

from quotefeed.errors import AllSymbolsFailed, NoSymbolsProvided, QuoteUnavailable

router = APIRouter()


@router.get('/quotes')
def get_quotes(request: Request, symbols: str | None = None):
    if symbols is None:
        raise HTTPException(status_code=400, detail='MISSING_SYMBOLS')

    service = request.app.state.batch_resolver
    req = symbols.split(',')
    print(f"[BATCH][request] symbols={symbols}", flush=True)
    try:
        rows = service.resolve_batch(req)
    except NoSymbolsProvided as exc:
        raise HTTPException(status_code=400, detail='NO_SYMBOLS_PROVIDED') from exc
    except AllSymbolsFailed as exc:
        raise HTTPException(status_code=500, detail='ALL_SYMBOLS_FAILED') from exc
    return [row.model_dump() for row in rows]


@router.get('/quotes/{symbol}')
def get_quote(symbol: str, request: Request):
    service = request.app.state.quote_resolver
    try:
        row = service.resolve(symbol)
    except NoSymbolsProvided as exc:
        raise HTTPException(status_code=400, detail='NO_SYMBOLS_PROVIDED') from exc
    except QuoteUnavailable as exc:
        raise HTTPException(status_code=404, detail='QUOTE_UNAVAILABLE') from exc
    return row.model_dump()


@router.get('/health')
def health(request: Request):
    cache = request.app.state.quote_cache
    return {
        'status': 'ok',
        'cached_symbols': len(cache),
        'cache': cache.ages_ms(),
    }


@router.get('/metrics/quote')
def quote_metrics(request: Request):
    metrics: dict = {}
    metrics.update(request.app.state.quote_resolver.metrics())
    metrics.update(request.app.state.batch_resolver.metrics())
    metrics.update(request.app.state.rate_limiter.metrics())
    warmer = request.app.state.cache_warmer
    if warmer is not None:
        metrics.update(warmer.metrics())
    return metrics
