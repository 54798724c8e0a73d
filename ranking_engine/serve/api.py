from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Depends, Request, Response, Query, status
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from qdrant_client import AsyncQdrantClient
import time

from ranking_engine.logging import setup_logging
from ranking_engine.observability import setup_metrics, setup_tracing

from ranking_engine.serve.dependencies import (
    get_engine,
    get_qdrant_client,
    get_redis_client,
)

from ranking_engine.config import (
    REDIS_HOST,
    REDIS_PORT,
    QDRANT_HOST,
    QDRANT_PORT,
    MAX_LIMIT,
    DEFAULT_RECOMMENDATION_LIMIT,
    DEFAULT_DISCOVER_LIMIT,
    DEFAULT_DIVERSITY_FACTOR,
)

from ranking_engine.engine import (
    NotFoundError,
    PoolCachingStore,
    RankingEngine,
    RankingError,
)
from ranking_engine.stores.qdrant_redis import QdrantRedisStore

from ranking_engine.serve.schemas import (
    DiscoverEnvelope,
    ErrorDetail,
    ErrorEnvelope,
    ItemPayload,
    RecommendationEnvelope,
    SearchBody,
    SearchEnvelope,
)
from ranking_engine.serve.translate import (
    discover_data,
    item_payload,
    recommendation_data,
    search_data,
    to_discover_request,
    to_recommendation_request,
    to_search_request,
)

logger = setup_logging("api.log")


@asynccontextmanager  # thanks to this the app knows when to execute code before and after yield
async def lifespan(app: FastAPI):
    # during startup - before handling requests
    logger.info("Initializing connections...")
    app.state.redis_client = redis.Redis(
        host=REDIS_HOST, port=REDIS_PORT, decode_responses=True
    )
    app.state.qdrant_client = AsyncQdrantClient(host=QDRANT_HOST, port=QDRANT_PORT)

    store = QdrantRedisStore(app.state.redis_client, app.state.qdrant_client)
    app.state.engine = RankingEngine(
        PoolCachingStore(store, app.state.redis_client)
    )

    yield
    # when the app finishes handling requests - right before shutdown
    logger.info("Closing connections...")
    await app.state.redis_client.aclose()
    await app.state.qdrant_client.close()


app = FastAPI(title="RankingEngineAPI", lifespan=lifespan)

setup_metrics(app)
setup_tracing(app)


@app.exception_handler(RankingError)
async def ranking_error_handler(request: Request, exc: RankingError):
    # the engine raises typed errors, the status code is decided here
    body = ErrorEnvelope(
        error=ErrorDetail(kind=exc.kind, message=exc.message, details=exc.details)
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


@app.get("/health/live")
async def health_check_live():
    return {"status": "ok"}


@app.get("/health/ready")
async def health_check(
    response: Response,
    redis_conn: redis.Redis = Depends(get_redis_client),
    qdrant_conn: AsyncQdrantClient = Depends(get_qdrant_client),
):
    health_status = {
        "status": "ok",
        "components": {
            "redis": {"status": "unknown", "latency_ms": 0},
            "qdrant": {"status": "unknown", "latency_ms": 0},
        },
    }
    has_error = False

    # redis
    start_time = time.time()
    try:
        await redis_conn.ping()
        latency = (time.time() - start_time) * 1000
        health_status["components"]["redis"] = {
            "status": "up",
            "latency_ms": round(latency, 2),
        }
    except Exception as e:
        has_error = True
        health_status["components"]["redis"] = {"status": "down", "error": str(e)}

    # qdrant
    start_time = time.time()
    try:
        await qdrant_conn.get_collections()
        latency = (time.time() - start_time) * 1000
        health_status["components"]["qdrant"] = {
            "status": "up",
            "latency_ms": round(latency, 2),
        }
    except Exception as e:
        has_error = True
        health_status["components"]["qdrant"] = {"status": "down", "error": str(e)}

    if has_error:
        health_status["status"] = "error"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        response.status_code = status.HTTP_200_OK

    return health_status


@app.get("/recommendations/{user_id}", response_model=RecommendationEnvelope)
async def get_recommendations(
    user_id: str,
    based_on: Optional[str] = Query(
        None, description="Seed item id, or a category token ('category:<name>')"
    ),
    limit: int = Query(
        DEFAULT_RECOMMENDATION_LIMIT,
        gt=0,
        le=MAX_LIMIT,
        description="Number of recommendations",
    ),
    diversity_factor: float = Query(
        DEFAULT_DIVERSITY_FACTOR,
        ge=0.0,
        le=1.0,
        description="Diversity trade-off (0.0 = pure relevance, 1.0 = maximal diversity)",
    ),
    engine: RankingEngine = Depends(get_engine),
):
    request = to_recommendation_request(user_id, based_on, limit, diversity_factor)
    result = await engine.get_recommendations(request)
    return RecommendationEnvelope(data=recommendation_data(request.user_id, result))


@app.post("/search", response_model=SearchEnvelope)
async def search(
    body: SearchBody,
    engine: RankingEngine = Depends(get_engine),
):
    start = time.time()
    request = to_search_request(body)
    result = await engine.search(request)
    processing_time_ms = (time.time() - start) * 1000
    return SearchEnvelope(data=search_data(request, result, processing_time_ms))


@app.get("/discover", response_model=DiscoverEnvelope)
async def discover(
    user_id: Optional[str] = Query(
        None, description="Excludes items this user already interacted with"
    ),
    limit: int = Query(
        DEFAULT_DISCOVER_LIMIT, gt=0, le=MAX_LIMIT, description="Number of items"
    ),
    engine: RankingEngine = Depends(get_engine),
):
    request = to_discover_request(user_id, limit)
    result = await engine.discover(request)
    return DiscoverEnvelope(data=discover_data(result))


@app.get(
    "/items/{item_id}",
    response_model=ItemPayload,
    responses={404: {"model": ErrorEnvelope}},
)
async def get_item(
    item_id: str,
    engine: RankingEngine = Depends(get_engine),
):
    item = await engine.store.get_item(item_id)
    if item is None:
        raise NotFoundError("Item", item_id)
    return item_payload(item)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
