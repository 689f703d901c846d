"""FastAPI server for the review bot."""

import hashlib
import hmac
import json
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Header, HTTPException, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse

from .bot import ReviewBot
from .circleci import CircleCIError
from .dashboard import build_statuses, build_view, render_dashboard
from .github.api import GitHubAPIError
from .ingress import CrawlAlreadyRunningError, handle_github_event

logger = logging.getLogger(__name__)

CRAWL_STARTED = "Running crawler on repos!"
CRAWL_BUSY = "Crawler already running"


def verify_webhook_signature(payload: bytes, signature: str, secret: str) -> bool:
    """
    Verify GitHub webhook HMAC-SHA256 signature.

    Args:
        payload: Raw request body bytes
        signature: The X-Hub-Signature-256 header value
        secret: The webhook secret configured in GitHub

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        # If no secret configured, skip verification (development mode)
        return True

    if not signature or not signature.startswith("sha256="):
        return False

    expected_signature = signature[7:]
    computed_signature = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed_signature, expected_signature)


def get_bot(request: Request) -> ReviewBot:
    return request.app.state.bot


def create_app(bot: ReviewBot, *, run_worker: bool = True) -> FastAPI:
    """
    Create the HTTP application around an assembled ReviewBot.

    Args:
        bot: The process-wide components.
        run_worker: Start and stop the queue worker with the application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if run_worker:
            await bot.worker.start()
        logger.info("Review bot started")

        yield

        if run_worker:
            await bot.worker.stop()
        await bot.store.close()
        logger.info("Review bot stopped")

    app = FastAPI(title="Review Bot", version="1.0.0", lifespan=lifespan)
    app.state.bot = bot

    @app.get("/", response_class=HTMLResponse)
    async def dashboard(request: Request) -> HTMLResponse:
        """Render the review queue dashboard."""
        bot = get_bot(request)
        records = await bot.store.list_pull_requests()
        crawl = await bot.store.get_crawl_state()

        builds = []
        if bot.circleci is not None:
            try:
                projects = await bot.circleci.get_projects()
                builds = build_statuses(projects, bot.config.dashboard_org)
            except (CircleCIError, httpx.HTTPError) as e:
                logger.error(f"Failed to load CircleCI projects: {e}")

        view = build_view(records, crawl, builds)
        return HTMLResponse(render_dashboard(view))

    @app.post("/github-hook", response_class=PlainTextResponse)
    async def github_hook(
        request: Request,
        x_github_event: str | None = Header(None),
        x_hub_signature_256: str | None = Header(None),
    ) -> PlainTextResponse:
        """Map a GitHub webhook delivery onto review jobs."""
        bot = get_bot(request)
        body = await request.body()

        if not verify_webhook_signature(
            body, x_hub_signature_256 or "", bot.config.github_webhook_secret
        ):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid webhook signature",
            )

        payload: Any
        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            payload = body.decode("utf-8", errors="replace")

        logger.info(f"Handling github hook: {x_github_event}")
        reply = handle_github_event(x_github_event, payload, bot.queue)
        return PlainTextResponse(reply)

    @app.get("/crawl", response_class=PlainTextResponse)
    async def crawl(request: Request) -> PlainTextResponse:
        """Enqueue a scan of every repository the bot's teams can see."""
        bot = get_bot(request)
        try:
            await bot.crawler.run()
        except CrawlAlreadyRunningError:
            return PlainTextResponse(CRAWL_BUSY)
        except (GitHubAPIError, httpx.HTTPError) as e:
            logger.error(f"Crawl failed: {e}")
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to list teams from GitHub",
            ) from e
        return PlainTextResponse(CRAWL_STARTED)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/queue/status")
    async def queue_status(request: Request) -> dict[str, Any]:
        """Get current queue status (for debugging)."""
        queue = get_bot(request).queue
        jobs = queue.get_all_jobs()
        return {
            "queue_size": queue.queue_size(),
            "active_jobs": queue.active_count(),
            "jobs": [
                {
                    "job_id": job.job_id,
                    "status": job.status.value,
                    "attempts": job.attempts,
                    "coalesced": job.coalesced,
                    "created_at": job.created_at.isoformat(),
                    "error": job.error_message,
                }
                for job in jobs
            ],
        }

    return app
