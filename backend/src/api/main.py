"""
Backend API: same-origin gateway to the FPL API plus server-side league stats.

Browsers cannot call the FPL API directly (no CORS headers), so
/api/fpl/{path} and the alternate /api/fpl-proxy forward requests verbatim.
The league stats endpoints run the aggregation pipeline here and return
(or stream) its results.
"""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# Load .env and ensure backend/src is on path
backend_dir = Path(__file__).resolve().parent.parent.parent
load_dotenv(backend_dir / ".env")
sys.path.insert(0, str(backend_dir / "src"))

import httpx
from fastapi import Depends, FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse

from aggregation.pipeline import LeagueStatsPipeline, NoDataError, PipelineStatus
from config import Config
from fpl_api.cache import FetchCache, normalize_path
from fpl_api.client import (
    REQUEST_HEADERS,
    FPLAPIClient,
    FPLAPIError,
    ValidationError,
    validate_league_id,
)

logger = logging.getLogger(__name__)

# Lazy init so tests can override before anything connects
_config: Config | None = None
_upstream: httpx.AsyncClient | None = None
_fpl_client: FPLAPIClient | None = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_upstream_client() -> httpx.AsyncClient:
    """HTTP client used by the pass-through endpoints."""
    global _upstream
    if _upstream is None:
        _upstream = httpx.AsyncClient(
            timeout=get_config().request_timeout,
            follow_redirects=True,
            headers=REQUEST_HEADERS
        )
    return _upstream


def get_fpl_client() -> FPLAPIClient:
    """FPL client (with its process-wide fetch cache) used by the stats endpoints."""
    global _fpl_client
    if _fpl_client is None:
        config = get_config()
        _fpl_client = FPLAPIClient(config, cache=FetchCache(ttl=config.fetch_cache_ttl))
    return _fpl_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    global _upstream, _fpl_client
    if _upstream is not None:
        await _upstream.aclose()
        _upstream = None
    if _fpl_client is not None:
        await _fpl_client.close()
        _fpl_client = None


app = FastAPI(title="FPL League Stats API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _forward(
    client: httpx.AsyncClient,
    config: Config,
    fpl_path: str,
    cache_headers: bool = True
) -> Response:
    """Forward GET {base}/{fpl_path}/ and relay body and status unchanged."""
    url = f"{config.fpl_api_base_url.rstrip('/')}/{fpl_path}/"
    try:
        upstream = await client.get(url)
    except httpx.TransportError as e:
        logger.warning("Upstream request failed", extra={"path": fpl_path, "error": str(e)})
        return _error(str(e) or type(e).__name__, 502)

    headers = {}
    if cache_headers:
        headers["Cache-Control"] = f"s-maxage={config.gateway_cache_max_age}, stale-while-revalidate"
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type="application/json",
        headers=headers
    )


async def _load_player_names(fpl_client: FPLAPIClient) -> dict[int, str]:
    """Player names from bootstrap-static, or an empty map if it is unavailable."""
    try:
        return await fpl_client.load_player_names()
    except FPLAPIError as e:
        logger.warning("Player names unavailable", extra={"error": str(e)})
        return {}


async def _proxy(client: httpx.AsyncClient, config: Config, path: str | None) -> Response:
    fpl_path = normalize_path(path or "")
    if not fpl_path:
        return _error("Missing path", 400)
    return await _forward(client, config, fpl_path)


@app.get("/api/fpl/{path:path}")
async def proxy_fpl(
    path: str,
    client: httpx.AsyncClient = Depends(get_upstream_client),
    config: Config = Depends(get_config),
):
    """Pass-through to the FPL API, e.g. /api/fpl/entry/123/history."""
    return await _proxy(client, config, path)


@app.get("/api/fpl-proxy")
async def proxy_fpl_query(
    fpl_path: str | None = Query(None, alias="fplPath"),
    client: httpx.AsyncClient = Depends(get_upstream_client),
    config: Config = Depends(get_config),
):
    """Alternate gateway taking the FPL path as ?fplPath=entry/123/history."""
    return await _proxy(client, config, fpl_path)


@app.get("/api/fpl-proxy/{path:path}")
async def proxy_fpl_alternate(
    path: str,
    fpl_path: str | None = Query(None, alias="fplPath"),
    client: httpx.AsyncClient = Depends(get_upstream_client),
    config: Config = Depends(get_config),
):
    """Alternate gateway; ?fplPath wins over the URL path when both are given."""
    return await _proxy(client, config, fpl_path or path)


@app.get("/api/standings")
async def get_standings_without_id():
    return _error("Invalid league ID", 400)


@app.get("/api/standings/{league_id}")
async def get_standings(
    league_id: str,
    client: httpx.AsyncClient = Depends(get_upstream_client),
    config: Config = Depends(get_config),
):
    """Classic league standings, forwarded verbatim."""
    try:
        lid = validate_league_id(league_id)
    except ValidationError as e:
        return _error(str(e), 400)
    return await _forward(client, config, f"leagues-classic/{lid}/standings", cache_headers=False)


@app.get("/api/leagues/{league_id}/stats")
async def get_league_stats(
    league_id: str,
    fpl_client: FPLAPIClient = Depends(get_fpl_client),
    config: Config = Depends(get_config),
):
    """Run the full stats pipeline for a league and return the final tables."""
    try:
        lid = validate_league_id(league_id)
    except ValidationError as e:
        return _error(str(e), 400)

    try:
        standings = await fpl_client.get_league_standings(lid)
    except FPLAPIError as e:
        logger.error("Standings fetch failed", extra={"league_id": lid, "error": str(e)})
        return _error("Failed to load standings. Check the league ID and try again.", 502)

    pipeline = LeagueStatsPipeline(fpl_client, config)
    try:
        stats = await pipeline.run(standings, await _load_player_names(fpl_client))
    except NoDataError as e:
        return _error(str(e), 502)

    return {"league_id": lid, "standings": standings, **stats.to_dict()}


@app.get("/api/leagues/{league_id}/stats/stream")
async def stream_league_stats(
    league_id: str,
    fpl_client: FPLAPIClient = Depends(get_fpl_client),
    config: Config = Depends(get_config),
):
    """Stream pipeline state snapshots as NDJSON, one line per state."""
    try:
        lid = validate_league_id(league_id)
    except ValidationError as e:
        return _error(str(e), 400)

    try:
        standings = await fpl_client.get_league_standings(lid)
    except FPLAPIError as e:
        logger.error("Standings fetch failed", extra={"league_id": lid, "error": str(e)})
        return _error("Failed to load standings. Check the league ID and try again.", 502)

    pipeline = LeagueStatsPipeline(fpl_client, config)
    queue: asyncio.Queue = asyncio.Queue()
    pipeline.subscribe(queue.put_nowait)

    async def run_pipeline():
        try:
            await pipeline.run(standings, await _load_player_names(fpl_client))
        except NoDataError:
            # Already published as an error state
            pass
        except Exception as e:
            logger.error("League stats stream failed", extra={
                "league_id": lid,
                "error": str(e)
            }, exc_info=True)
            queue.put_nowait({"status": PipelineStatus.ERROR.value, "message": str(e)})
        finally:
            queue.put_nowait(None)

    async def states():
        task = asyncio.create_task(run_pipeline())
        try:
            while True:
                state = await queue.get()
                if state is None:
                    break
                data = state if isinstance(state, dict) else state.to_dict()
                yield json.dumps(data) + "\n"
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(states(), media_type="application/x-ndjson")


@app.get("/health")
def health():
    return {"status": "ok"}
