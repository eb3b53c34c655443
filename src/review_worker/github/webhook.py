"""GitHub webhook server that turns pull request events into queued jobs."""

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from redis.asyncio import Redis

from review_worker.config import Config
from review_worker.models.job import Job, JobKind
from review_worker.queue import JobQueue, create_redis_client
from review_worker.rate_limiter import RateLimitConfig, check_rate_limit
from review_worker.worker import job_defaults

logger = logging.getLogger(__name__)

SUPPORTED_EVENTS = {"pull_request", "pull_request_review_comment"}
REVIEW_ACTIONS = {"opened", "synchronize", "reopened"}
DELIVERY_KEY_PREFIX = "review-worker:webhook:delivery"
DELIVERY_TTL_SECONDS = 300


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Verify GitHub webhook signature.

    Args:
        payload: Raw request body
        signature: X-Hub-Signature-256 header value
        secret: Webhook secret

    Returns:
        True if signature is valid
    """
    if not signature.startswith("sha256="):
        return False

    expected = (
        "sha256="
        + hmac.new(
            secret.encode(),
            payload,
            hashlib.sha256,
        ).hexdigest()
    )

    return hmac.compare_digest(expected, signature)


def is_bot(user: dict[str, Any] | None) -> bool:
    """True for GitHub App and other bot accounts."""
    if not user:
        return False
    return user.get("type") == "Bot" or "[bot]" in (user.get("login") or "")


def build_job(event: str, payload: dict[str, Any], defaults: dict | None = None) -> Job:
    """Normalize a supported event payload into a queue job.

    Raises:
        KeyError: If a required field is missing from the payload
    """
    pull_request = payload["pull_request"]
    comment = payload.get("comment") or {}
    kind = JobKind.REVIEW if event == "pull_request" else JobKind.REPLY
    return Job(
        kind=kind,
        repository_full_name=payload["repository"]["full_name"],
        installation_id=int(payload["installation"]["id"]),
        pr_number=int(pull_request["number"]),
        head_sha=pull_request["head"]["sha"],
        action=payload.get("action", ""),
        comment_id=comment.get("id") if kind is JobKind.REPLY else None,
        pr_body=pull_request.get("body"),
        **(defaults or {}),
    )


def _ignore_reason(event: str, payload: dict[str, Any]) -> str | None:
    """Why an event does not produce a job, or None if it does."""
    if is_bot(payload.get("sender")):
        return "bot_event"

    action = payload.get("action")
    pull_request = payload.get("pull_request") or {}
    if event == "pull_request":
        if action not in REVIEW_ACTIONS:
            return "action_type"
        if pull_request.get("draft"):
            return "draft"
        if is_bot(pull_request.get("user")):
            return "bot_pr"
    else:
        if action != "created":
            return "action_type"
        # Only replies can continue a thread the bot started
        if not (payload.get("comment") or {}).get("in_reply_to_id"):
            return "not_a_reply"
    return None


def create_webhook_app(
    config: Config,
    queue: JobQueue | None = None,
    redis: Redis | None = None,
) -> FastAPI:
    """Create the FastAPI webhook application.

    Args:
        config: Application configuration
        queue: Job queue (default: built on ``redis``)
        redis: Redis client for delivery dedup and rate limiting
            (default: built from ``config.redis``)

    Returns:
        FastAPI application
    """
    if redis is None:
        redis = create_redis_client(config.redis.url)
    if queue is None:
        queue = JobQueue(redis, prefix=config.redis.queue_prefix)

    webhook_secret = config.github.webhook_secret
    if not webhook_secret:
        logger.warning("No webhook secret configured, signatures will not be verified")

    rate_limit = RateLimitConfig(
        max_requests=config.rate_limit.max_requests,
        window_seconds=config.rate_limit.window_seconds,
        key_prefix=config.rate_limit.key_prefix,
    )
    defaults = job_defaults(config.worker)

    app = FastAPI(
        title="AI Review Worker Webhook",
        description="Receives GitHub events and queues AI code reviews",
        version="0.1.0",
    )

    @app.get(config.server.health_check_path)
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "ai-review-worker"}

    @app.post("/webhook")
    async def github_webhook(request: Request):
        """Handle GitHub webhook events."""
        # Read body once (required for signature verification and parsing)
        body = await request.body()
        event = request.headers.get("X-GitHub-Event", "")
        delivery_id = request.headers.get("X-GitHub-Delivery")
        delivery_key = f"{DELIVERY_KEY_PREFIX}:{delivery_id}" if delivery_id else None

        if delivery_key and await redis.get(delivery_key):
            logger.warning(f"Duplicate webhook delivery {delivery_id} ({event})")
            raise HTTPException(status_code=409, detail="Duplicate delivery")

        if webhook_secret:
            signature = request.headers.get("X-Hub-Signature-256", "")
            if not body or not signature:
                raise HTTPException(status_code=400, detail="Missing body or signature")
            if not verify_signature(body, signature, webhook_secret):
                logger.warning(f"Webhook signature verification failed for delivery {delivery_id}")
                raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")

        installation_id = (payload.get("installation") or {}).get("id")
        client = request.client.host if request.client else "unknown"
        limit = await check_rate_limit(redis, str(installation_id or client), rate_limit)
        if not limit.allowed:
            reset_at = datetime.fromtimestamp(limit.reset_at, tz=timezone.utc)
            logger.warning(f"Webhook rate limit exceeded for {installation_id or client}")
            raise HTTPException(
                status_code=429,
                detail={"message": "Too Many Requests", "reset_at": reset_at.isoformat()},
                headers={
                    "Retry-After": str(max(1, int(limit.reset_at - time.time()))),
                    "X-RateLimit-Remaining": str(limit.remaining),
                    "X-RateLimit-Reset": str(int(limit.reset_at)),
                },
            )

        if delivery_key:
            await redis.set(delivery_key, str(int(time.time() * 1000)), ex=DELIVERY_TTL_SECONDS)

        if event == "ping":
            logger.info("Received ping from GitHub")
            return {"status": "pong"}

        if event not in SUPPORTED_EVENTS:
            logger.debug(f"Ignoring event type: {event}")
            return {"status": "ignored", "reason": "event_type"}

        repo_name = (payload.get("repository") or {}).get("full_name")
        logger.info(
            f"Webhook received: {event}/{payload.get('action')} for {repo_name} "
            f"(delivery {delivery_id}, installation {installation_id})"
        )

        reason = _ignore_reason(event, payload)
        if reason:
            logger.info(f"Ignoring {event} event for {repo_name}: {reason}")
            return {"status": "ignored", "reason": reason}

        try:
            job = build_job(event, payload, defaults)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Invalid {event} payload (delivery {delivery_id}): missing {e}")
            raise HTTPException(status_code=400, detail="Invalid payload") from e

        try:
            added = await queue.enqueue(job)
        except Exception as e:
            logger.error(f"Failed to enqueue job {job.id}: {e}")
            raise HTTPException(status_code=500, detail="Queue error") from e

        if not added:
            return {"status": "duplicate", "job_id": job.id}
        logger.info(f"Enqueued {job.kind.value} job {job.id}")
        return {"status": "queued", "job_id": job.id}

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "AI Review Worker",
            "version": "0.1.0",
            "endpoints": {
                "health": config.server.health_check_path,
                "webhook": "/webhook",
            },
        }

    return app
