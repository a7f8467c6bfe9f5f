import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy import case, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from memorykeeper.core.config import RATE_LIMIT_BACKEND, RATE_LIMITS
from memorykeeper.core.database import SessionLocal
from memorykeeper.core.errors import StoreUnavailable
from memorykeeper.core.utils import utcnow
from memorykeeper.models.rate_limit_model import RateLimitCounter
from memorykeeper.schemas.rate_limit_schema import AdmissionResult

log = logging.getLogger("ratelimit")


class AdmissionBackend:
    """Fixed-window counter storage.

    `hit` admits or rejects one request for `key` and returns the resulting
    (allowed, count, window_start).
    """

    def hit(self, key: str, limit: int, window: timedelta, now: datetime):
        raise NotImplementedError


class InMemoryAdmissionBackend(AdmissionBackend):
    """Process-local counters. Fast, but lost on restart and not shared
    between instances, so limits are only soft."""

    def __init__(self, cleanup_every: int = 100) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, list] = {}  # key -> [window_start, count, window]
        self._cleanup_every = cleanup_every
        self._calls = 0

    def _sweep(self, now: datetime) -> None:
        expired = [k for k, (start, _, window) in self._windows.items() if now > start + window]
        for k in expired:
            del self._windows[k]

    def hit(self, key: str, limit: int, window: timedelta, now: datetime):
        with self._lock:
            self._calls += 1
            if self._calls % self._cleanup_every == 0:
                self._sweep(now)

            entry = self._windows.get(key)
            if entry is None or now > entry[0] + window:
                self._windows[key] = [now, 1, window]
                return True, 1, now

            window_start, count, _ = entry
            if count < limit:
                entry[1] = count + 1
                return True, count + 1, window_start
            return False, count, window_start

    def __len__(self) -> int:
        return len(self._windows)


class DatabaseAdmissionBackend(AdmissionBackend):
    """Counters in the `rate_limits` table, shared by every process.

    The admit decision is a single upsert: the conflict branch only fires
    when the window has elapsed or there is room left, so two concurrent
    requests cannot both read a stale count.
    """

    def __init__(self, session_factory=SessionLocal) -> None:
        self.session_factory = session_factory

    @staticmethod
    def _insert_for(dialect_name: str):
        if dialect_name == "sqlite":
            return sqlite.insert
        if dialect_name == "postgresql":
            return postgresql.insert
        raise StoreUnavailable(f"database rate limiting is not supported on {dialect_name}")

    def hit(self, key: str, limit: int, window: timedelta, now: datetime):
        table = RateLimitCounter.__table__
        expired = table.c.window_start < now - window

        db = self.session_factory()
        try:
            insert = self._insert_for(db.get_bind().dialect.name)
            stmt = insert(table).values(key=key, window_start=now, count=1)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.key],
                set_={
                    # both CASEs see the pre-update row
                    "count": case((expired, 1), else_=table.c.count + 1),
                    "window_start": case((expired, now), else_=table.c.window_start),
                },
                where=expired | (table.c.count < limit),
            ).returning(table.c.count, table.c.window_start)

            row = db.execute(stmt).first()
            if row is None:
                current = db.execute(
                    select(table.c.count, table.c.window_start).where(table.c.key == key)
                ).first()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

        # Row.count is the tuple method, not the column
        if row is not None:
            count, window_start = row
            return True, count, window_start
        count, window_start = current
        return False, count, window_start


class AdmissionController:
    def __init__(self, backend: AdmissionBackend) -> None:
        self.backend = backend

    def admit(self, key: str, limit: int, window_seconds: float, now: datetime | None = None) -> AdmissionResult:
        now = now or utcnow()
        window = timedelta(seconds=window_seconds)
        allowed, count, window_start = self.backend.hit(key, limit, window, now)
        if not allowed:
            log.info("request over limit", extra={"key": key, "event": "admission_denied"})
        return AdmissionResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count) if allowed else 0,
            reset_at=window_start + window,
        )


def build_admission_controller(backend_name: str = RATE_LIMIT_BACKEND) -> AdmissionController:
    if backend_name == "database":
        return AdmissionController(DatabaseAdmissionBackend())
    if backend_name == "memory":
        return AdmissionController(InMemoryAdmissionBackend())
    raise ValueError(f"unknown RATE_LIMIT_BACKEND: {backend_name}")


admission_controller = build_admission_controller()


def get_admission_controller() -> AdmissionController:
    return admission_controller


def get_subject(request: Request) -> str:
    """Who a request is counted against.

    Only identity established server side is used: a user id the auth layer
    put on `request.state`, else the peer address. Client-supplied headers
    such as X-User-Id or X-Forwarded-For are never trusted here; deployments
    behind a proxy should rewrite the peer address (uvicorn --proxy-headers)
    or override this dependency.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    if request.client:
        return f"ip:{request.client.host}"
    return "anonymous"


def rate_limit_headers(result: AdmissionResult) -> Dict[str, str]:
    reset_epoch = int(result.reset_at.replace(tzinfo=timezone.utc).timestamp())
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(reset_epoch),
    }


def rate_limit(route_key: str):
    """FastAPI dependency gating a route with one of the RATE_LIMITS presets."""
    limit, window_seconds = RATE_LIMITS[route_key]

    def dependency(
        response: Response,
        subject: str = Depends(get_subject),
        controller: AdmissionController = Depends(get_admission_controller),
    ) -> AdmissionResult:
        key = f"{route_key}:{subject}"
        result = controller.admit(key, limit, window_seconds)
        headers = rate_limit_headers(result)

        if not result.allowed:
            retry_after = max(1, math.ceil((result.reset_at - utcnow()).total_seconds()))
            headers["Retry-After"] = str(retry_after)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
                headers=headers,
            )

        response.headers.update(headers)
        return result

    return dependency
