import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.health import router as health_router
from app.api.verification import router as verification_router
from app.api.webhooks import router as webhooks_router
from app.core.config import settings
from app.core.errors import CheckmarkError, checkmark_error_handler
from app.providers import get_provider
from app.services.chain import close_chain_clients
from app.utils.redis_pool import close_redis

log = logging.getLogger("checkmarks")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    provider = get_provider()
    log.info("Verification provider: %s", provider.id)
    yield
    await close_chain_clients()
    await close_redis()


app = FastAPI(title="Pending Checkmarks", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    max_age=3600,
)

app.add_exception_handler(CheckmarkError, checkmark_error_handler)

app.include_router(verification_router)
app.include_router(webhooks_router)
app.include_router(health_router)
