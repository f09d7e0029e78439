"""GPS point retention: the periodic janitor and the administrative purge."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from sqlalchemy.orm import Session

from snowops.modules.telemetry_store import delete_older_than
from snowops.modules.visibility import Principal, require_purge_permission

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RetentionJanitor:
    """Deletes points older than ``retention_days`` on its own slow cadence."""

    def __init__(
        self,
        retention_days: int,
        interval_seconds: float = 3600.0,
        db_factory: Callable[[], Session] | None = None,
    ):
        self.retention_days = retention_days
        self.interval_seconds = interval_seconds
        if db_factory is None:
            from snowops.database import SessionLocal
            db_factory = SessionLocal
        self._db_factory = db_factory
        self.stats: dict[str, Any] = {
            "sweeps": 0,
            "sweep_errors": 0,
            "deleted_total": 0,
            "last_cutoff": None,
        }

    @property
    def enabled(self) -> bool:
        return self.retention_days > 0

    def sweep(self, now: datetime | None = None) -> int:
        """Delete expired points once. Returns the number deleted (0 on failure)."""
        cutoff = (now or _utcnow()) - timedelta(days=self.retention_days)
        db = self._db_factory()
        try:
            deleted = delete_older_than(db, cutoff)
            db.commit()
        except Exception as exc:
            logger.error("Failed to clean up old GPS points: %s", exc)
            db.rollback()
            self.stats["sweep_errors"] += 1
            return 0
        finally:
            db.close()

        self.stats["sweeps"] += 1
        self.stats["deleted_total"] += deleted
        self.stats["last_cutoff"] = cutoff
        if deleted > 0:
            logger.info("Cleaned up %d old GPS points (cutoff %s)", deleted, cutoff.isoformat())
        return deleted

    async def run(self, stop_event: asyncio.Event) -> None:
        if not self.enabled:
            logger.info("GPS point retention disabled (retention_days=%d)", self.retention_days)
            return
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                await asyncio.to_thread(self.sweep)


def resolve_cutoff(
    older_than: datetime | None = None,
    days: int | None = None,
    now: datetime | None = None,
) -> datetime:
    """Validate purge arguments and return the effective naive-UTC cutoff."""
    now = now or _utcnow()
    if (older_than is None) == (days is None):
        raise ValueError("Specify exactly one of 'older_than' or 'days'")
    if days is not None:
        if days <= 0:
            raise ValueError("'days' must be a positive integer")
        try:
            return now - timedelta(days=days)
        except OverflowError:
            raise ValueError("'days' is out of range")
    if older_than.tzinfo is not None:
        older_than = older_than.astimezone(timezone.utc).replace(tzinfo=None)
    if older_than > now:
        raise ValueError("'older_than' must be in the past")
    return older_than


def purge_points(
    db: Session,
    principal: Principal,
    older_than: datetime | None = None,
    days: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Administrative bulk delete. Returns ``{"deleted": n, "cutoff": datetime}``.

    Permission and argument checks run before any row is touched.
    """
    require_purge_permission(principal)
    cutoff = resolve_cutoff(older_than=older_than, days=days, now=now)
    deleted = delete_older_than(db, cutoff)
    db.commit()
    logger.info(
        "GPS points purged by %s (%s): %d deleted, cutoff %s",
        principal.user_id, principal.role.value, deleted, cutoff.isoformat(),
    )
    return {"deleted": deleted, "cutoff": cutoff}
