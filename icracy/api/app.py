"""
FastAPI application for the assembly.

JSON routes live under ``/v1``; ``/v1/debates/{id}/stream`` serves the live
event stream. Errors from the core map onto HTTP status codes in one place.
"""

import asyncio
import hashlib
import logging
from collections.abc import Mapping
from contextlib import asynccontextmanager, suppress
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from .. import settings
from ..adapters.catalog import CatalogService
from ..engine import debate as orchestrator
from ..engine.events import EventBus
from ..engine.models import now_iso
from ..errors import Forbidden, IcracyError, InvalidInput, NotFound, PersistenceFailure
from ..storage import reports
from ..storage.store import Store
from .streaming import event_stream

logger = logging.getLogger(__name__)


# =============================================================================
# Request bodies
# =============================================================================


class ResolutionIn(BaseModel):
    title: str = ""
    body: str = ""
    resolution: str = ""
    topic: str | None = None

    @property
    def text(self) -> str:
        return self.body or self.resolution


class SubmitIn(ResolutionIn):
    delegates: list[str] = []
    userVote: str | None = None


class HumanVoteIn(BaseModel):
    vote: str | None = None


class HumanArgumentIn(BaseModel):
    content: str = ""
    stance: str | None = None


# =============================================================================
# Helpers
# =============================================================================


def clamp_limit(raw: Any, default: int, low: int, high: int) -> int:
    """Parse a numeric query value; missing, zero or non-numeric gives ``default``."""
    try:
        value = int(float(raw)) if raw not in (None, "") else 0
    except (TypeError, ValueError):
        value = 0
    return max(low, min(high, value or default))


def parse_offset(raw: Any) -> int:
    try:
        return max(0, int(float(raw)))
    except (TypeError, ValueError):
        return 0


def resolve_user(store: Store, headers: Mapping[str, str]) -> dict[str, Any]:
    """
    Map request headers to a user, creating the user on first sight.

    The headers are an unverified development hint: ``x-user-id`` wins,
    then ``x-user-handle``, then the default user.
    """
    user_id = (headers.get("x-user-id") or "").strip()
    handle = (headers.get("x-user-handle") or "").strip()
    name = (headers.get("x-user-name") or "").strip()

    if user_id:
        existing = store.get_user(user_id)
        if existing:
            return existing
        return store.ensure_user(
            user_id, handle or f"user-{user_id[:8]}", name or f"User {user_id[:6]}"
        )

    if handle:
        existing = store.get_user_by_handle(handle)
        if existing:
            return existing
        generated_id = f"user-{hashlib.sha1(handle.encode()).hexdigest()[:16]}"
        return store.ensure_user(generated_id, handle, name or handle)

    return store.get_user(settings.DEFAULT_USER_ID) or store.ensure_user(
        settings.DEFAULT_USER_ID, settings.DEFAULT_USER_HANDLE, settings.DEFAULT_USER_NAME
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def snapshot_job(store: Store, interval: float) -> None:
    """Persist leaderboard snapshots for every period every ``interval`` seconds."""
    while True:
        await asyncio.sleep(interval)
        try:
            reports.persist_all_snapshots(store)
        except PersistenceFailure:
            logger.exception("Leaderboard snapshot job failed")


# =============================================================================
# Application
# =============================================================================


def create_app(
    store: Store | None = None,
    bus: EventBus | None = None,
    catalog: CatalogService | None = None,
    sync_catalog: bool = True,
    snapshot_interval: float = settings.SNAPSHOT_INTERVAL,
) -> FastAPI:
    """
    Build the application around one store, event bus and catalog service.

    Args:
        store: Persistence store (defaults to ``settings.DB_URL``)
        bus: Event bus shared by debates and streams
        catalog: Delegate catalog service
        sync_catalog: Sync the delegate catalog on startup
        snapshot_interval: Seconds between leaderboard snapshots (0 disables the job)
    """
    owns_store = store is None
    store = store or Store()
    bus = bus or EventBus()
    catalog = catalog or CatalogService(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store.create_all()
        store.ensure_user(
            settings.DEFAULT_USER_ID, settings.DEFAULT_USER_HANDLE, settings.DEFAULT_USER_NAME
        )
        if sync_catalog:
            await catalog.eligible(settings.CATALOG_SYNC_LIMIT)
        snapshots = None
        if snapshot_interval > 0:
            snapshots = asyncio.create_task(snapshot_job(store, snapshot_interval))
        logger.info("Assembly ready on %s", store.url)
        yield
        if snapshots is not None:
            snapshots.cancel()
            with suppress(asyncio.CancelledError):
                await snapshots
        if owns_store:
            store.dispose()

    app = FastAPI(title="icracy", description="AI delegate assembly", lifespan=lifespan)
    app.state.store = store
    app.state.bus = bus
    app.state.catalog = catalog

    def current_user(request: Request) -> dict[str, Any]:
        return resolve_user(store, request.headers)

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(InvalidInput)
    async def invalid_input(_request: Request, exc: InvalidInput):
        return _error(400, str(exc))

    @app.exception_handler(Forbidden)
    async def forbidden(_request: Request, exc: Forbidden):
        return _error(403, str(exc))

    @app.exception_handler(NotFound)
    async def not_found(_request: Request, exc: NotFound):
        return _error(404, str(exc))

    @app.exception_handler(IcracyError)
    async def internal_error(_request: Request, exc: IcracyError):
        logger.error("Request failed: %s", exc)
        return JSONResponse(
            status_code=500, content={"error": "Internal server error", "details": str(exc)}
        )

    # -------------------------------------------------------------------------
    # Health and delegates
    # -------------------------------------------------------------------------

    @app.get("/v1/health")
    def health():
        return {
            "ok": True,
            "time": now_iso(),
            "dbUrl": store.url,
            "openrouterConfigured": bool(settings.OPENROUTER_API_KEY),
        }

    @app.get("/v1/delegates/eligible")
    async def eligible_delegates(limit: str | None = None):
        delegates = await catalog.eligible(clamp_limit(limit, 10, 1, 50))
        return {
            "source": settings.OPENROUTER_RANKINGS_URL,
            "updatedAt": now_iso(),
            "delegates": delegates,
        }

    # -------------------------------------------------------------------------
    # Live views
    # -------------------------------------------------------------------------

    @app.get("/v1/live/hero")
    def live_hero():
        debate_id = store.latest_debate_id()
        if debate_id is None:
            return {"debate": None}
        return {"debate": store.get_debate_view(debate_id), "delegates": store.list_delegates(6)}

    @app.get("/v1/live/arguments")
    def live_arguments(limit: str | None = None):
        debate_id = store.latest_debate_id()
        if debate_id is None:
            return {"items": []}
        items = store.list_messages(
            debate_id, limit=clamp_limit(limit, 20, 1, 100), newest_first=True
        )
        return {"items": items}

    @app.get("/v1/live/consensus")
    def live_consensus():
        debate_id = store.latest_debate_id(by="updated_at")
        return {"consensus": store.get_consensus_row(debate_id) if debate_id else None}

    @app.get("/v1/live/delegates")
    def live_delegates(limit: str | None = None):
        return {"delegates": store.list_delegates(clamp_limit(limit, 10, 1, 50))}

    @app.get("/v1/live/trending")
    def live_trending(limit: str | None = None):
        return {"items": reports.list_archive(store, limit=clamp_limit(limit, 8, 1, 30))}

    # -------------------------------------------------------------------------
    # Drafts and submission
    # -------------------------------------------------------------------------

    @app.post("/v1/drafts", status_code=201)
    def create_draft(payload: ResolutionIn, user: dict = Depends(current_user)):
        draft = orchestrator.create_draft(
            store, user["id"], payload.title, payload.text, payload.topic
        )
        return {"draft": draft}

    @app.put("/v1/drafts/{draft_id}")
    def update_draft(draft_id: str, payload: ResolutionIn, user: dict = Depends(current_user)):
        draft = orchestrator.update_draft(
            store, draft_id, user["id"], payload.title, payload.text, payload.topic
        )
        return {"draft": draft}

    @app.get("/v1/drafts/{draft_id}")
    def get_draft(draft_id: str, user: dict = Depends(current_user)):
        return {"draft": orchestrator.get_draft(store, draft_id, user["id"])}

    @app.post("/v1/resolutions/submit", status_code=201)
    async def submit_resolution(payload: SubmitIn, user: dict = Depends(current_user)):
        return await orchestrator.submit(
            store,
            bus,
            user["id"],
            payload.title,
            payload.text,
            delegate_ids=payload.delegates,
            topic=payload.topic,
            user_vote=payload.userVote,
            catalog=catalog,
        )

    # -------------------------------------------------------------------------
    # Debates
    # -------------------------------------------------------------------------

    @app.get("/v1/debates/{debate_id}")
    def get_debate(debate_id: str):
        view = store.get_debate_view(debate_id)
        if view is None:
            raise NotFound("Debate not found")
        return view

    @app.get("/v1/debates/{debate_id}/messages")
    def debate_messages(debate_id: str, limit: str | None = None, offset: str | None = None):
        limit_value = clamp_limit(limit, 100, 1, 500)
        offset_value = parse_offset(offset)
        items = store.list_messages(debate_id, limit=limit_value, offset=offset_value)
        return {"items": items, "limit": limit_value, "offset": offset_value}

    @app.post("/v1/debates/{debate_id}/human-vote", status_code=201)
    async def human_vote(debate_id: str, payload: HumanVoteIn, user: dict = Depends(current_user)):
        return orchestrator.record_human_vote(store, bus, debate_id, user["id"], payload.vote)

    @app.post("/v1/debates/{debate_id}/human-argument", status_code=201)
    async def human_argument(
        debate_id: str, payload: HumanArgumentIn, user: dict = Depends(current_user)
    ):
        return orchestrator.record_human_argument(
            store, bus, debate_id, user, payload.content, payload.stance
        )

    @app.get("/v1/debates/{debate_id}/consensus")
    def debate_consensus(debate_id: str):
        row = store.get_consensus_row(debate_id)
        if row is None:
            raise NotFound("Debate not found")
        return row

    @app.get("/v1/debates/{debate_id}/stream")
    async def debate_stream(debate_id: str, request: Request):
        if store.get_debate_row(debate_id) is None:
            raise NotFound("Debate not found")
        return StreamingResponse(
            event_stream(bus, debate_id, settings.KEEPALIVE_INTERVAL, request.is_disconnected),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # -------------------------------------------------------------------------
    # Archive
    # -------------------------------------------------------------------------

    @app.get("/v1/archive")
    def archive(
        verdict: str | None = None,
        topic: str | None = None,
        delegate: str | None = None,
        q: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        limit: str | None = None,
        offset: str | None = None,
    ):
        limit_value = clamp_limit(limit, 20, 1, 100)
        offset_value = parse_offset(offset)
        items = reports.list_archive(
            store,
            verdict=verdict,
            topic=topic,
            delegate=delegate,
            q=q,
            date_from=date_from,
            date_to=date_to,
            limit=limit_value,
            offset=offset_value,
        )
        return {"items": items, "limit": limit_value, "offset": offset_value}

    @app.get("/v1/archive/facets")
    def archive_facets():
        return reports.archive_facets(store)

    @app.get("/v1/archive/{debate_id}")
    def archive_item(debate_id: str):
        view = store.get_debate_view(debate_id)
        if view is None:
            raise NotFound("Archive item not found")
        return view

    @app.get("/v1/archive/{debate_id}/transcript")
    def archive_transcript(debate_id: str):
        return {"items": store.list_messages(debate_id, limit=None)}

    @app.get("/v1/archive/{debate_id}/votes")
    def archive_votes(debate_id: str):
        return reports.debate_votes(store, debate_id)

    # -------------------------------------------------------------------------
    # Current user
    # -------------------------------------------------------------------------

    @app.get("/v1/me/profile")
    def my_profile(user: dict = Depends(current_user)):
        return {"user": user, "stats": reports.user_stats(store, user["id"], "all_time")}

    @app.get("/v1/me/submissions")
    def my_submissions(limit: str | None = None, user: dict = Depends(current_user)):
        items = reports.user_submissions(store, user["id"], clamp_limit(limit, 30, 1, 100))
        return {"items": items}

    @app.get("/v1/me/votes")
    def my_votes(limit: str | None = None, user: dict = Depends(current_user)):
        return {"items": reports.user_votes(store, user["id"], clamp_limit(limit, 100, 1, 200))}

    @app.get("/v1/me/alignment")
    def my_alignment(user: dict = Depends(current_user)):
        return {
            "allTime": reports.user_stats(store, user["id"], "all_time"),
            "weekly": reports.user_stats(store, user["id"], "weekly"),
            "monthly": reports.user_stats(store, user["id"], "monthly"),
        }

    @app.get("/v1/me/stats")
    def my_stats(user: dict = Depends(current_user)):
        return {
            "user": {"id": user["id"], "handle": user["handle"], "displayName": user["displayName"]},
            "summary": reports.user_stats(store, user["id"], "all_time"),
            "timeline": reports.user_timeline(store, user["id"]),
        }

    # -------------------------------------------------------------------------
    # Leaderboard
    # -------------------------------------------------------------------------

    @app.get("/v1/leaderboard")
    def leaderboard(period: str | None = None, limit: str | None = None):
        period_value = reports.normalize_period(period)
        items = reports.compute_leaderboard(store, period_value, clamp_limit(limit, 100, 1, 200))
        return {"period": period_value, "items": items, "updatedAt": now_iso()}

    @app.get("/v1/leaderboard/history")
    def leaderboard_history(period: str | None = None, limit: str | None = None):
        snapshots = reports.snapshot_history(
            store, reports.normalize_period(period), clamp_limit(limit, 12, 1, 100)
        )
        return {"snapshots": snapshots}

    @app.get("/v1/users/{user_id}/rank-history")
    def user_rank_history(user_id: str):
        return {"items": reports.rank_history(store, user_id)}

    return app
