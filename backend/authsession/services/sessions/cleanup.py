# authsession/services/sessions/cleanup.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from authsession.core.clock import Clock, SystemClock
from authsession.core.config import SessionSettings
from authsession.services._shared.ports.blacklist import TokenBlacklist
from authsession.services._shared.ports.refresh_token_store import RefreshTokenStore

log = logging.getLogger(__name__)

JOB_ID = "refresh_token_cleanup"


@dataclass(frozen=True, slots=True)
class CleanupReport:
    """
    Outcome of one sweep.

    :param deleted: Refresh-token records removed.
    :param purged: Blacklist entries removed (``0`` when the cache expires natively).
    :param skipped: ``True`` when another sweep was still running.
    :param error: Failure description, if the sweep failed.
    """

    deleted: int = 0
    purged: int = 0
    skipped: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.skipped and self.error is None


class CleanupScheduler:
    """
    Periodic, non-overlapping sweep of expired refresh tokens.

    At most one sweep runs at a time: a tick that fires while the previous one
    is still executing is skipped, never queued. A failing sweep is logged and
    recorded in :attr:`last_error`; the next tick retries on its own.
    """

    def __init__(
        self,
        *,
        store: RefreshTokenStore,
        blacklist: TokenBlacklist,
        settings: SessionSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.blacklist = blacklist
        self.settings = settings or SessionSettings()
        self.clock = clock or SystemClock()
        self.last_run_at: datetime | None = None
        self.last_report: CleanupReport | None = None
        self.last_error: str | None = None
        self._running = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    # ------------------------------ sweep ------------------------------

    def run(self) -> CleanupReport:
        """Run one sweep now, unless one is already in flight."""
        if not self._running.acquire(blocking=False):
            log.info("Cleanup already running; tick skipped", extra={"event": "cleanup_skipped"})
            return CleanupReport(skipped=True)
        try:
            report = self._sweep()
        finally:
            self._running.release()
        self.last_report = report
        return report

    def _sweep(self) -> CleanupReport:
        now = self.clock.now()
        self.last_run_at = now
        cutoff = now - self.settings.refresh_token_retention
        try:
            deleted = self.store.delete_expired_before(cutoff)
            purged = self.blacklist.purge_expired()
        except Exception as exc:  # a failed tick must not kill the scheduler
            self.last_error = f"{exc.__class__.__name__}: {exc}"
            log.error(
                "Refresh token cleanup failed",
                exc_info=True,
                extra={"event": "cleanup_failed"},
            )
            return CleanupReport(error=self.last_error)

        self.last_error = None
        log.info(
            "Refresh token cleanup removed %d records",
            deleted,
            extra={"event": "cleanup_done", "count": deleted},
        )
        return CleanupReport(deleted=deleted, purged=purged)

    # ---------------------------- scheduling ----------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Schedule :meth:`run` every ``cleanup_interval`` on a daemon thread."""
        if self.running:
            return
        scheduler = BackgroundScheduler(daemon=True, timezone="UTC")
        scheduler.add_job(
            self.run,
            trigger=IntervalTrigger(seconds=int(self.settings.cleanup_interval.total_seconds())),
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        log.info(
            "Refresh token cleanup scheduled every %s",
            self.settings.cleanup_interval,
            extra={"event": "cleanup_scheduled"},
        )

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        self._scheduler = None
