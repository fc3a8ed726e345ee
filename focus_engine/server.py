"""
Focus API: FastAPI server holding the authoritative focus session records.

This server provides:
- Focus session start / update / complete / abandon / delete
- The per-user active-session singleton (409 on a second open session)
- Per-user focus settings
- Session history, stats and the started/completed event feed
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .config import Config, load_config
from .errors import (
    SessionAbandoned,
    SessionAlreadyCompleted,
    SessionConflict,
    SessionNotFound,
    ValidationFailed,
)
from .log import get_logger, recent_logs
from .models import CreateSessionRequest, SessionFilters, UpdateSessionRequest, session_to_api
from .settings import FocusSettings, FocusSettingsUpdate
from .store import SessionStore

logger = get_logger("server")


def current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Identity is resolved upstream; the gateway forwards it as X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


# ============ Exception handlers ============

async def _conflict_handler(request: Request, exc: SessionConflict):
    logger.info(f"Conflict: active session exists path={request.url.path}")
    return JSONResponse(status_code=409, content={"detail": {
        "code": "session_active",
        "message": str(exc),
        "session": session_to_api(exc.active_session),
    }})


async def _already_completed_handler(request: Request, exc: SessionAlreadyCompleted):
    return JSONResponse(status_code=409, content={"detail": {
        "code": "session_completed",
        "message": str(exc),
        "session": session_to_api(exc.session),
    }})


async def _abandoned_handler(request: Request, exc: SessionAbandoned):
    return JSONResponse(status_code=409, content={"detail": {
        "code": "session_abandoned",
        "message": str(exc),
        "session": session_to_api(exc.session),
    }})


async def _not_found_handler(request: Request, exc: SessionNotFound):
    return JSONResponse(status_code=404, content={"detail": "Focus session not found"})


async def _validation_handler(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _unhandled_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception path={request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


def create_app(config: Config | None = None, store: SessionStore | None = None) -> FastAPI:
    config = config or load_config()
    store = store or SessionStore(config.db_path)
    scheduler = AsyncIOScheduler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await store.init_db()
        scheduler.add_job(
            store.purge_old_events,
            CronTrigger(hour=3, minute=0),
            id="purge_old_events",
            kwargs={"days": config.event_retention_days},
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Scheduler started")
        yield
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")

    app = FastAPI(
        title="Focus API",
        description="Authoritative store for focus/pomodoro sessions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SessionConflict, _conflict_handler)
    app.add_exception_handler(SessionAlreadyCompleted, _already_completed_handler)
    app.add_exception_handler(SessionAbandoned, _abandoned_handler)
    app.add_exception_handler(SessionNotFound, _not_found_handler)
    app.add_exception_handler(ValidationFailed, _validation_handler)
    app.add_exception_handler(Exception, _unhandled_handler)

    # ---- Sessions ----

    @app.post("/api/focus/start", status_code=201)
    async def start_focus_session(
        request: CreateSessionRequest,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        """Open a session. 409 when the user already has one open."""
        row = await store.create_session(user_id, request)
        return {"session": session_to_api(row), "message": "Focus session started successfully"}

    @app.get("/api/focus/sessions")
    async def list_focus_sessions(
        type: Optional[str] = None,
        completed: Optional[bool] = None,
        task_id: Optional[str] = Query(None, alias="taskId"),
        start_date: Optional[str] = Query(None, alias="startDate"),
        end_date: Optional[str] = Query(None, alias="endDate"),
        page: int = 1,
        limit: int = 20,
        sort_by: str = Query("startTime", alias="sortBy"),
        sort_order: str = Query("desc", alias="sortOrder"),
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        try:
            filters = SessionFilters(
                type=type, completed=completed, task_id=task_id,
                start_date=start_date, end_date=end_date, page=page,
                limit=limit, sort_by=sort_by, sort_order=sort_order,
            )
        except ValidationError as e:
            raise ValidationFailed(f"Invalid filters: {e.error_count()} error(s)") from e

        rows, pagination = await store.list_sessions(user_id, filters)
        return {"sessions": [session_to_api(r) for r in rows], "pagination": pagination}

    @app.get("/api/focus/sessions/active")
    async def get_active_focus_session(
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        return session_to_api(await store.get_active_session(user_id))

    @app.get("/api/focus/sessions/{session_id}")
    async def get_focus_session(
        session_id: str,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        return session_to_api(await store.get_session(user_id, session_id))

    @app.put("/api/focus/sessions/{session_id}")
    async def update_focus_session(
        session_id: str,
        request: UpdateSessionRequest,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        row = await store.update_session(user_id, session_id, request.changes())
        return session_to_api(row)

    @app.post("/api/focus/sessions/{session_id}/complete")
    async def complete_focus_session(
        session_id: str,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        """Rewards are computed here. 409 session_completed on a repeat call."""
        result = await store.complete_session(user_id, session_id)
        body = {
            "session": session_to_api(result["session"]),
            "xpEarned": result["xp_earned"],
            "message": "Focus session completed successfully",
        }
        if result["new_achievements"]:
            body["newAchievements"] = result["new_achievements"]
        return body

    @app.post("/api/focus/sessions/{session_id}/abandon")
    async def abandon_focus_session(
        session_id: str,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        return session_to_api(await store.abandon_session(user_id, session_id))

    @app.delete("/api/focus/sessions/{session_id}", status_code=204)
    async def delete_focus_session(
        session_id: str,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        await store.delete_session(user_id, session_id)
        return Response(status_code=204)

    # ---- Stats / settings ----

    @app.get("/api/focus/stats")
    async def get_focus_stats(
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        stats = await store.get_stats(user_id)
        progress = await store.get_progress(user_id)
        stats["xp"] = progress["xp"]
        return stats

    @app.get("/api/focus/settings")
    async def get_focus_settings(
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        settings: FocusSettings = await store.get_settings(user_id)
        return settings.to_api()

    @app.put("/api/focus/settings")
    async def update_focus_settings(
        request: FocusSettingsUpdate,
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        settings = await store.update_settings(user_id, request)
        logger.info(f"Focus settings updated for {user_id}")
        return settings.to_api()

    # ---- Feeds / health ----

    @app.get("/api/events/recent")
    async def get_recent_events(
        limit: int = Query(20, ge=1, le=200),
        user_id: str = Depends(current_user),
        store: SessionStore = Depends(get_store),
    ):
        return await store.recent_events(limit, user_id)

    @app.get("/api/logs/recent")
    async def get_recent_logs(limit: int = Query(50, ge=1, le=100)):
        return {"logs": recent_logs(limit)}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _config = app.state.config
    uvicorn.run(app, host=_config.host, port=_config.port)
