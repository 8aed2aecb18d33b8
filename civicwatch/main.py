# File: civicwatch/main.py
# Project: civicwatch

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi import _rate_limit_exceeded_handler

from civicwatch.core.config import cors_origins_list, settings
from civicwatch.core.errors import CivicError, civic_error_handler
from civicwatch.core.ratelimit import limiter
from civicwatch.routers import admin_issues, issues, issues_stats
from civicwatch.services.lifecycle import get_lifecycle

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # upvote events from the store re-derive cached counts and scores
    consumer = asyncio.create_task(get_lifecycle().consume_changes())
    logger.info("Change consumer started")

    yield

    consumer.cancel()
    with suppress(asyncio.CancelledError):
        await consumer
    logger.info("Change consumer stopped")


app = FastAPI(title="CivicWatch API", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(CivicError, civic_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/health")
def health():
    return {"ok": True}

app.include_router(issues_stats.router)
app.include_router(issues.router)
app.include_router(admin_issues.router)
