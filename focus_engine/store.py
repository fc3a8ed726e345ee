"""SQLite-backed session store (aiosqlite).

Holds focus sessions, per-user settings and progress counters, and the
event feed consumed by the notification layer. The one-active-session-per-
user invariant is enforced by a partial unique index, so a second open
session is rejected by the database itself rather than by a read-then-write
check.
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

import aiosqlite

from .errors import SessionAbandoned, SessionAlreadyCompleted, SessionConflict, SessionNotFound
from .log import get_logger
from .models import DEFAULT_BREAK_MINUTES, CreateSessionRequest, SessionFilters
from .rewards import DEFAULT_POLICY, RewardPolicy, compute_actual_duration, compute_rewards
from .settings import FocusSettings, FocusSettingsUpdate

logger = get_logger("store")

# completed-session count -> achievement key
MILESTONES = {
    1: "first_focus_session",
    10: "focus_apprentice",
    50: "focus_adept",
    100: "focus_master",
}

SORT_COLUMNS = {
    "startTime": "start_time",
    "duration": "duration",
    "productivity": "productivity",
    "createdAt": "created_at",
}

UPDATABLE_COLUMNS = ("actual_duration", "interruptions", "paused_time", "notes", "completed")


class SessionStore:
    """Async CRUD over the focus tables. One short-lived connection per call."""

    def __init__(self, db_path: Path, clock: Callable[[], datetime] | None = None,
                 policy: RewardPolicy = DEFAULT_POLICY):
        self.db_path = Path(db_path)
        self.policy = policy
        self._clock = clock or datetime.now

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    @asynccontextmanager
    async def _connect(self):
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            # Set busy_timeout to prevent blocking on lock contention
            await db.execute("PRAGMA busy_timeout=5000")
            yield db

    # ── Schema ────────────────────────────────────────────────

    async def init_db(self) -> None:
        """Create tables and indexes if missing."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS focus_sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    type TEXT NOT NULL DEFAULT 'pomodoro',
                    duration INTEGER NOT NULL,
                    actual_duration INTEGER,
                    break_duration INTEGER DEFAULT 5,
                    completed INTEGER DEFAULT 0,
                    interruptions INTEGER DEFAULT 0,
                    task_id TEXT,
                    xp_earned INTEGER DEFAULT 0,
                    productivity INTEGER DEFAULT 0,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    paused_time INTEGER DEFAULT 0,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # At most one open session per user
            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_focus_sessions_active
                ON focus_sessions(user_id)
                WHERE completed = 0 AND end_time IS NULL
            """)
            await db.execute(
                "CREATE INDEX IF NOT EXISTS idx_focus_sessions_user_start "
                "ON focus_sessions(user_id, start_time DESC)"
            )

            await db.execute("""
                CREATE TABLE IF NOT EXISTS focus_settings (
                    user_id TEXT PRIMARY KEY,
                    settings TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS user_progress (
                    user_id TEXT PRIMARY KEY,
                    xp INTEGER DEFAULT 0,
                    total_focus_time INTEGER DEFAULT 0,
                    completed_sessions INTEGER DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    user_id TEXT,
                    session_id TEXT,
                    details TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            await db.execute("CREATE INDEX IF NOT EXISTS idx_events_time ON events(created_at DESC)")

            await db.commit()
        logger.info(f"Database initialized at {self.db_path}")

    # ── Sessions ──────────────────────────────────────────────

    async def create_session(self, user_id: str, request: CreateSessionRequest) -> dict:
        """Open a new session. Raises SessionConflict if one is already open."""
        now = self._now_iso()
        session_id = uuid.uuid4().hex
        break_duration = (
            request.break_duration if request.break_duration is not None else DEFAULT_BREAK_MINUTES
        )

        async with self._connect() as db:
            try:
                await db.execute(
                    """INSERT INTO focus_sessions
                       (id, user_id, type, duration, break_duration, task_id, notes,
                        start_time, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (session_id, user_id, request.type, request.duration, break_duration,
                     request.task_id, request.notes, now, now, now),
                )
                await db.commit()
            except sqlite3.IntegrityError:
                active = await self._fetch_active(db, user_id)
                logger.info(f"Rejected second open session for {user_id}")
                raise SessionConflict(active)

            row = await self._fetch(db, user_id, session_id)

        await self.log_event("focus_session_started", user_id, session_id, {
            "type": request.type,
            "duration": request.duration,
        })
        logger.info(f"Focus session started: {session_id[:8]} user={user_id} ({request.duration} min)")
        return row

    async def get_active_session(self, user_id: str) -> Optional[dict]:
        async with self._connect() as db:
            return await self._fetch_active(db, user_id)

    async def get_session(self, user_id: str, session_id: str) -> dict:
        async with self._connect() as db:
            row = await self._fetch(db, user_id, session_id)
        if row is None:
            raise SessionNotFound(session_id)
        return row

    async def update_session(self, user_id: str, session_id: str, changes: dict[str, Any]) -> dict:
        """Partial update of counters/notes. completed=True stamps end_time if unset."""
        fields = {k: v for k, v in changes.items() if k in UPDATABLE_COLUMNS and v is not None}

        async with self._connect() as db:
            row = await self._fetch(db, user_id, session_id)
            if row is None:
                raise SessionNotFound(session_id)

            if "completed" in fields:
                fields["completed"] = int(bool(fields["completed"]))
                if fields["completed"] and not row["end_time"]:
                    fields["end_time"] = self._now_iso()

            if fields:
                fields["updated_at"] = self._now_iso()
                assignments = ", ".join(f"{col} = ?" for col in fields)
                await db.execute(
                    f"UPDATE focus_sessions SET {assignments} WHERE id = ? AND user_id = ?",
                    (*fields.values(), session_id, user_id),
                )
                await db.commit()
                row = await self._fetch(db, user_id, session_id)
        return row

    async def complete_session(self, user_id: str, session_id: str) -> dict:
        """Close a session and attribute its rewards exactly once.

        Returns {"session", "xp_earned", "new_achievements"}. Raises
        SessionAlreadyCompleted when the row is already completed, including when
        a concurrent call wins the conditional update, and SessionAbandoned when
        it was closed by abandonment.
        """
        settings = await self.get_settings(user_id)

        async with self._connect() as db:
            row = await self._fetch(db, user_id, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            if row["completed"]:
                raise SessionAlreadyCompleted(row)
            if row["end_time"]:
                raise SessionAbandoned(row)

            end = self._clock()
            actual = compute_actual_duration(
                start_time=datetime.fromisoformat(row["start_time"]),
                end_time=end,
                paused_minutes=row["paused_time"] or 0,
                interruptions=row["interruptions"] or 0,
                reported=row["actual_duration"],
                policy=self.policy,
            )
            rewards = compute_rewards(
                {**row, "actual_duration": actual}, settings.xp_multiplier, self.policy
            )

            now = self._now_iso()
            cursor = await db.execute(
                """UPDATE focus_sessions
                   SET completed = 1, end_time = ?, actual_duration = ?,
                       productivity = ?, xp_earned = ?, updated_at = ?
                   WHERE id = ? AND user_id = ? AND completed = 0 AND end_time IS NULL""",
                (end.isoformat(), actual, rewards.productivity, rewards.xp, now,
                 session_id, user_id),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                current = await self._fetch(db, user_id, session_id)
                if current is not None and not current["completed"]:
                    raise SessionAbandoned(current)
                raise SessionAlreadyCompleted(current)

            await db.execute(
                """INSERT INTO user_progress (user_id, xp, total_focus_time, completed_sessions, updated_at)
                   VALUES (?, ?, ?, 1, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       xp = xp + excluded.xp,
                       total_focus_time = total_focus_time + excluded.total_focus_time,
                       completed_sessions = completed_sessions + 1,
                       updated_at = excluded.updated_at""",
                (user_id, rewards.xp, actual, now),
            )
            await db.commit()

            cursor = await db.execute(
                "SELECT completed_sessions FROM user_progress WHERE user_id = ?", (user_id,)
            )
            completed_count = (await cursor.fetchone())[0]
            row = await self._fetch(db, user_id, session_id)

        new_achievements = [MILESTONES[completed_count]] if completed_count in MILESTONES else []

        await self.log_event("focus_session_completed", user_id, session_id, {
            "xp_earned": rewards.xp,
            "productivity": rewards.productivity,
            "actual_duration": actual,
            "new_achievements": new_achievements,
        })
        logger.info(
            f"Focus session completed: {session_id[:8]} user={user_id} "
            f"+{rewards.xp} XP productivity={rewards.productivity}"
        )
        return {"session": row, "xp_earned": rewards.xp, "new_achievements": new_achievements}

    async def abandon_session(self, user_id: str, session_id: str) -> dict:
        """Close an open session without rewards, releasing the active slot."""
        now = self._now_iso()
        async with self._connect() as db:
            cursor = await db.execute(
                """UPDATE focus_sessions SET end_time = ?, updated_at = ?
                   WHERE id = ? AND user_id = ? AND completed = 0 AND end_time IS NULL""",
                (now, now, session_id, user_id),
            )
            await db.commit()
            row = await self._fetch(db, user_id, session_id)

        if row is None:
            raise SessionNotFound(session_id)
        if cursor.rowcount:
            await self.log_event("focus_session_abandoned", user_id, session_id)
            logger.info(f"Focus session abandoned: {session_id[:8]} user={user_id}")
        return row

    async def delete_session(self, user_id: str, session_id: str) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM focus_sessions WHERE id = ? AND user_id = ?", (session_id, user_id)
            )
            await db.commit()
        if cursor.rowcount == 0:
            raise SessionNotFound(session_id)

    async def list_sessions(self, user_id: str, filters: SessionFilters) -> tuple[list[dict], dict]:
        clauses = ["user_id = ?"]
        params: list[Any] = [user_id]
        if filters.type:
            clauses.append("type = ?")
            params.append(filters.type)
        if filters.completed is not None:
            clauses.append("completed = ?")
            params.append(int(filters.completed))
        if filters.task_id:
            clauses.append("task_id = ?")
            params.append(filters.task_id)
        if filters.start_date:
            clauses.append("start_time >= ?")
            params.append(filters.start_date)
        if filters.end_date:
            clauses.append("start_time <= ?")
            params.append(filters.end_date)

        where = " AND ".join(clauses)
        order = f"{SORT_COLUMNS[filters.sort_by]} {filters.sort_order.upper()}"
        offset = (filters.page - 1) * filters.limit

        async with self._connect() as db:
            cursor = await db.execute(f"SELECT COUNT(*) FROM focus_sessions WHERE {where}", params)
            total = (await cursor.fetchone())[0]
            cursor = await db.execute(
                f"SELECT * FROM focus_sessions WHERE {where} ORDER BY {order} LIMIT ? OFFSET ?",
                (*params, filters.limit, offset),
            )
            rows = [dict(r) for r in await cursor.fetchall()]

        pagination = {
            "page": filters.page,
            "limit": filters.limit,
            "total": total,
            "pages": -(-total // filters.limit),
        }
        return rows, pagination

    async def get_stats(self, user_id: str) -> dict:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM focus_sessions WHERE user_id = ?", (user_id,))
            sessions = [dict(r) for r in await cursor.fetchall()]

        today = self._clock().date()
        completed = [s for s in sessions if s["completed"]]
        total_focus = sum(s["actual_duration"] or 0 for s in completed)

        def started_on_or_after(s: dict, day: date) -> bool:
            return datetime.fromisoformat(s["start_time"]).date() >= day

        week_start = today - timedelta(days=today.weekday())
        month_start = today.replace(day=1)

        return {
            "totalSessions": len(sessions),
            "completedSessions": len(completed),
            "totalFocusTime": total_focus,
            "averageSessionLength": round(total_focus / len(completed)) if completed else 0,
            "averageProductivity": (
                round(sum(s["productivity"] for s in completed) / len(completed)) if completed else 0
            ),
            "completionRate": round(len(completed) / len(sessions) * 100) if sessions else 0,
            "totalXpEarned": sum(s["xp_earned"] or 0 for s in sessions),
            "longestSession": max((s["actual_duration"] or 0 for s in completed), default=0),
            "currentStreak": focus_streak(
                {datetime.fromisoformat(s["start_time"]).date() for s in completed}, today
            ),
            "todaysSessions": sum(1 for s in sessions if started_on_or_after(s, today)),
            "thisWeekSessions": sum(1 for s in sessions if started_on_or_after(s, week_start)),
            "thisMonthSessions": sum(1 for s in sessions if started_on_or_after(s, month_start)),
            "categoryBreakdown": {
                "pomodoro": sum(1 for s in sessions if s["type"] == "pomodoro"),
                "custom": sum(1 for s in sessions if s["type"] == "custom"),
            },
        }

    async def get_progress(self, user_id: str) -> dict:
        async with self._connect() as db:
            cursor = await db.execute("SELECT * FROM user_progress WHERE user_id = ?", (user_id,))
            row = await cursor.fetchone()
        if row is None:
            return {"user_id": user_id, "xp": 0, "total_focus_time": 0, "completed_sessions": 0}
        return dict(row)

    # ── Settings ──────────────────────────────────────────────

    async def get_settings(self, user_id: str) -> FocusSettings:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT settings FROM focus_settings WHERE user_id = ?", (user_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            return FocusSettings()
        return FocusSettings(**json.loads(row["settings"]))

    async def update_settings(self, user_id: str, patch: FocusSettingsUpdate) -> FocusSettings:
        merged = patch.apply_to(await self.get_settings(user_id))
        async with self._connect() as db:
            await db.execute(
                """INSERT INTO focus_settings (user_id, settings, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(user_id) DO UPDATE SET
                       settings = excluded.settings, updated_at = excluded.updated_at""",
                (user_id, merged.model_dump_json(), self._now_iso()),
            )
            await db.commit()
        return merged

    # ── Events ────────────────────────────────────────────────

    async def log_event(self, event_type: str, user_id: str = None, session_id: str = None,
                        details: dict = None) -> None:
        """Append to the events feed read by the notification layer."""
        async with self._connect() as db:
            await db.execute(
                """INSERT INTO events (event_type, user_id, session_id, details, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (event_type, user_id, session_id,
                 json.dumps(details) if details else None, self._now_iso()),
            )
            await db.commit()

    async def recent_events(self, limit: int = 20, user_id: str | None = None) -> list[dict]:
        query = "SELECT * FROM events"
        params: list[Any] = []
        if user_id:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        async with self._connect() as db:
            cursor = await db.execute(query, params)
            rows = [dict(r) for r in await cursor.fetchall()]
        for row in rows:
            row["details"] = json.loads(row["details"]) if row["details"] else None
        return rows

    async def purge_old_events(self, days: int = 30) -> int:
        """Delete events older than `days`. Returns rows removed."""
        cutoff = (self._clock() - timedelta(days=days)).isoformat()
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM events WHERE created_at < ?", (cutoff,))
            await db.commit()
        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} events older than {days} days")
        return cursor.rowcount

    # ── Internal ──────────────────────────────────────────────

    @staticmethod
    async def _fetch(db: aiosqlite.Connection, user_id: str, session_id: str) -> Optional[dict]:
        cursor = await db.execute(
            "SELECT * FROM focus_sessions WHERE id = ? AND user_id = ?", (session_id, user_id)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    @staticmethod
    async def _fetch_active(db: aiosqlite.Connection, user_id: str) -> Optional[dict]:
        cursor = await db.execute(
            """SELECT * FROM focus_sessions
               WHERE user_id = ? AND completed = 0 AND end_time IS NULL""",
            (user_id,),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None


def focus_streak(days: set[date], today: date) -> int:
    """Consecutive days with a completed session, counting back from today.

    A streak that ended yesterday still counts (today may not have a session yet).
    """
    check = today if today in days else today - timedelta(days=1)
    streak = 0
    while check in days:
        streak += 1
        check -= timedelta(days=1)
    return streak
