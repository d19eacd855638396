import logging

from fastapi import APIRouter, HTTPException
from redis.exceptions import RedisError

from app.utils.redis_pool import get_redis

log = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    try:
        r = await get_redis()
        await r.ping()
    except RedisError as e:
        log.error("health.redis_unreachable: %s", e)
        raise HTTPException(status_code=503, detail="Session store unreachable")
    return {"ok": True}
