"""
HTTP surface: the GitHub webhook receiver plus read-only review lookup.

The webhook handler only verifies, deduplicates, routes and enqueues. All
GitHub, AI and database work for a review happens in the queued pipeline.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, HTTPException, Request
from redis.exceptions import RedisError

from . import __version__, db
from .config import settings
from .dedup import DeliveryDeduplicator
from .errors import AuthenticationError, DuplicateDeliveryError, QueueFullError
from .events import event_bus, install_default_handlers
from .pipeline import ReviewPipeline
from .queue import InlineQueue, JobQueue, build_queue
from .redis_client import close_redis
from .router import route_event
from .schemas import ReviewView, WebhookAck
from .signature import require_signature
from .store import build_store

logger = logging.getLogger(__name__)


def create_app(
    *,
    deduplicator: DeliveryDeduplicator | None = None,
    queue: JobQueue | None = None,
    webhook_secret: str | None = None,
) -> FastAPI:
    """Build the application; collaborators default to the configured backends."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        uses_redis = "redis" in (settings.store_backend, settings.queue_backend)
        install_default_handlers(publish=uses_redis)
        yield
        if isinstance(app.state.queue, InlineQueue):
            await app.state.queue.drain()
        await event_bus.drain()
        await db.engine.dispose()
        if uses_redis:
            await close_redis()

    app = FastAPI(title="reviewhook", version=__version__, lifespan=lifespan)
    app.state.deduplicator = deduplicator or DeliveryDeduplicator(build_store())
    app.state.queue = queue or build_queue(ReviewPipeline().run)
    app.state.webhook_secret = (
        settings.github_webhook_secret if webhook_secret is None else webhook_secret
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/webhooks/github", response_model=WebhookAck, response_model_exclude_none=True)
    async def github_webhook(
        request: Request,
        x_hub_signature_256: str | None = Header(default=None),
        x_github_event: str | None = Header(default=None),
        x_github_delivery: str | None = Header(default=None),
    ) -> WebhookAck:
        # Raw bytes are what GitHub signed.
        body = await request.body()

        if not x_hub_signature_256 or not x_github_event or not x_github_delivery:
            raise HTTPException(status_code=400, detail="Missing GitHub webhook headers")

        try:
            require_signature(body, x_hub_signature_256, request.app.state.webhook_secret)
        except AuthenticationError as exc:
            logger.warning("Rejected delivery %s: %s", x_github_delivery, exc)
            raise HTTPException(status_code=401, detail="Invalid signature") from None

        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, ValueError):
            raise HTTPException(status_code=400, detail="Body is not valid JSON") from None
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")

        deduplicator: DeliveryDeduplicator = request.app.state.deduplicator
        try:
            await deduplicator.acquire(x_github_delivery)
        except DuplicateDeliveryError:
            return WebhookAck(status="duplicate", delivery_id=x_github_delivery)

        decision = route_event(x_github_event, payload, x_github_delivery)
        if not decision.should_review:
            logger.debug("Delivery %s ignored: %s", x_github_delivery, decision.reason)
            return WebhookAck(
                status="ignored", delivery_id=x_github_delivery, reason=decision.reason
            )

        queue: JobQueue = request.app.state.queue
        try:
            await queue.enqueue(decision.job)
        except (QueueFullError, RedisError) as exc:
            # Let GitHub's redelivery go through once the queue recovers.
            await deduplicator.release(x_github_delivery)
            logger.error("Could not enqueue delivery %s: %s", x_github_delivery, exc)
            raise HTTPException(status_code=503, detail="Review queue unavailable") from exc

        logger.info(
            "Queued review of %s#%s (delivery %s)",
            decision.job.repository_full_name,
            decision.job.pull_request_number,
            x_github_delivery,
        )
        return WebhookAck(status="queued", delivery_id=x_github_delivery)

    @app.get("/reviews/{review_id}", response_model=ReviewView, response_model_exclude_none=True)
    async def read_review(review_id: str) -> ReviewView:
        async with db.get_session() as session:
            review = await db.get_review(session, review_id)
        if review is None:
            raise HTTPException(status_code=404, detail="Review not found")
        return ReviewView(
            id=review.id,
            status=review.status,
            repository=review.repository.full_name if review.repository else None,
            pull_request_number=review.pull_request_number,
            delivery_id=review.delivery_id,
            analysis_source=review.analysis_source,
            error_code=review.error_code,
            ai_analysis=review.ai_analysis,
        )

    return app
