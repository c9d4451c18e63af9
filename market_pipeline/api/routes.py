from typing import Callable

from fastapi import APIRouter, Header, HTTPException, Query, Request

from market_pipeline.errors import FetchError, RunInProgressError, StorageError
from market_pipeline.schemas.run import RunReport
from market_pipeline.services.collection import CollectionLoop, build_collection_loop

router = APIRouter()


def _collection_loop(request: Request) -> CollectionLoop:
    state = request.app.state
    if state.collection_loop is None:
        state.collection_loop = build_collection_loop(state.get_settings(), lease=state.run_lease)
    return state.collection_loop


def _require_api_key(request: Request, api_key: str | None) -> None:
    expected = request.app.state.get_settings().INTERNAL_API_KEY
    if not expected or api_key != expected:
        print("[API][unauthorized] path=" + request.url.path, flush=True)
        raise HTTPException(status_code=401, detail='UNAUTHORIZED')


def _run_collection(run: Callable[[], RunReport]) -> dict:
    try:
        report = run()
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail='RUN_IN_PROGRESS') from exc
    except FetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except StorageError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return report.model_dump()


@router.post('/collect/on-demand')
def collect_on_demand(request: Request, x_api_key: str | None = Header(default=None, alias='X-Api-Key')):
    _require_api_key(request, x_api_key)
    loop = _collection_loop(request)
    return _run_collection(loop.run_on_demand)


@router.post('/collect/nightly')
def collect_nightly(
    request: Request,
    duration_sec: float | None = Query(default=None, ge=0),
    x_api_key: str | None = Header(default=None, alias='X-Api-Key'),
):
    _require_api_key(request, x_api_key)
    loop = _collection_loop(request)
    return _run_collection(lambda: loop.run_nightly(duration_sec=duration_sec))


@router.get('/collect/lease')
def get_lease_status(request: Request):
    return request.app.state.run_lease.status().model_dump()


@router.get('/market/cache')
def get_market_cache(request: Request):
    loop = _collection_loop(request)
    return loop.cache_writer.read_latest().model_dump(by_alias=True)


@router.get('/metrics/collection')
def collection_metrics(request: Request):
    metrics = _collection_loop(request).metrics()
    scheduler = request.app.state.scheduler
    metrics['scheduler'] = scheduler.metrics() if scheduler is not None else None
    return metrics
