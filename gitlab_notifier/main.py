"""FastAPI application for gitlab-notifier."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gitlab_notifier.config import settings
from gitlab_notifier.database import init_db, close_db
from gitlab_notifier.models import (  # noqa: F401  registers tables
    cache_entry,
    chat_settings,
    notification_record,
    oauth,
    reply_intent,
    web_preview,
)
from gitlab_notifier.routes.oauth import router as oauth_router
from gitlab_notifier.routes.previews import router as previews_router
from gitlab_notifier.routes.telegram import router as telegram_router
from gitlab_notifier.routes.webhooks import router as webhooks_router
from gitlab_notifier.services.jobs import job_queue

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("gitlab-notifier starting up")
    await init_db()
    job_queue.start()
    yield
    logger.info("gitlab-notifier shutting down")
    await job_queue.stop()
    await close_db()


app = FastAPI(
    title="GitLab Notifier",
    description="GitLab webhook notifications and interactive replies for Telegram chats",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(telegram_router, prefix=settings.api_prefix)
app.include_router(oauth_router, prefix=settings.api_prefix)
app.include_router(previews_router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "gitlab-notifier"}
