from fastapi import Request
import redis.asyncio as redis
from qdrant_client import AsyncQdrantClient

from ranking_engine.engine import RankingEngine


async def get_redis_client(request: Request) -> redis.Redis:
    return request.app.state.redis_client


async def get_qdrant_client(request: Request) -> AsyncQdrantClient:
    return request.app.state.qdrant_client


async def get_engine(request: Request) -> RankingEngine:
    return request.app.state.engine
