"""APScheduler-based periodic cleanup of capture caches and temp files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from stealth_relay.capture.retention import is_expired, max_age_for_file, now_ms
from stealth_relay.config import CleanupConfig
from stealth_relay.log import get_logger
from stealth_relay.services.base import Service

if TYPE_CHECKING:
    from stealth_relay.capture.pipeline import CapturePipeline
    from stealth_relay.storage.ledger import ForwardLedger

logger = get_logger(__name__)

CLEANUP_JOB_ID = "capture_cleanup"


@dataclass
class AccountCleanup:
    media_expired: int = 0
    text_expired: int = 0
    orphans_deleted: int = 0


@dataclass
class CleanupReport:
    skipped: bool = False
    accounts: dict[str, AccountCleanup] = field(default_factory=dict)
    ledger_pruned: int = 0

    @property
    def total_removed(self) -> int:
        return sum(
            a.media_expired + a.text_expired + a.orphans_deleted for a in self.accounts.values()
        )


class CleanupService(Service):
    """Sweeps every registered account on a fixed interval.

    Sweeps never overlap: a run that fires while the previous one is still
    going is skipped. Cache mutation happens on the event loop; only the
    directory listing and unlinks of orphaned files leave it.
    """

    def __init__(
        self,
        config: CleanupConfig,
        ledger: Optional[ForwardLedger] = None,
        ledger_retention_days: int = 30,
        clock: Callable[[], int] = now_ms,
    ):
        self._config = config
        self._ledger = ledger
        self._ledger_retention_days = ledger_retention_days
        self._clock = clock
        self._scheduler = AsyncIOScheduler(timezone=config.timezone)
        self._pipelines: dict[str, CapturePipeline] = {}
        self._running = False
        self.last_report: Optional[CleanupReport] = None

    @property
    def service_name(self) -> str:
        return "cleanup"

    def register(self, pipeline: CapturePipeline) -> None:
        self._pipelines[pipeline.account_id] = pipeline
        logger.info("cleanup_account_registered", account_id=pipeline.account_id)

    def unregister(self, account_id: str) -> None:
        self._pipelines.pop(account_id, None)

    async def start(self) -> None:
        self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=self._config.interval_minutes),
            id=CLEANUP_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("cleanup_started", interval_minutes=self._config.interval_minutes)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # shutdown is scheduled on the loop; let it run before reporting stopped
            await asyncio.sleep(0)
        logger.info("cleanup_stopped")

    async def health_check(self) -> bool:
        return self._scheduler.running

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self, now: Optional[int] = None) -> CleanupReport:
        """Run one sweep over all accounts."""
        if self._running:
            logger.info("cleanup_skipped_overlap")
            return CleanupReport(skipped=True)

        self._running = True
        now = self._clock() if now is None else now
        report = CleanupReport()
        try:
            for account_id, pipeline in list(self._pipelines.items()):
                try:
                    report.accounts[account_id] = await self._clean_account(pipeline, now)
                except Exception:
                    logger.error("cleanup_account_failed", account_id=account_id, exc_info=True)

            if self._ledger is not None:
                try:
                    report.ledger_pruned = await self._ledger.prune(self._ledger_retention_days)
                except Exception as e:
                    logger.warning("ledger_prune_failed", error=str(e))
        finally:
            self._running = False

        self.last_report = report
        logger.info(
            "cleanup_complete",
            accounts=len(report.accounts),
            removed=report.total_removed,
            ledger_pruned=report.ledger_pruned,
        )
        return report

    async def _clean_account(self, pipeline: CapturePipeline, now: int) -> AccountCleanup:
        media_expired, text_expired = pipeline.sweep(now)
        orphans = await self._delete_orphans(pipeline, now)
        result = AccountCleanup(
            media_expired=media_expired,
            text_expired=text_expired,
            orphans_deleted=orphans,
        )
        logger.debug(
            "cleanup_account_done",
            account_id=pipeline.account_id,
            media_expired=media_expired,
            text_expired=text_expired,
            orphans_deleted=orphans,
            text_cache=len(pipeline.text_cache),
            media_cache=len(pipeline.media_cache),
        )
        return result

    async def _delete_orphans(self, pipeline: CapturePipeline, now: int) -> int:
        """Delete temp files no live record references and that are past their policy age."""
        store = pipeline.files
        stored = await asyncio.to_thread(store.list_files)
        # Snapshot after the listing: a file written meanwhile is either
        # referenced now or too young to be touched.
        referenced = pipeline.referenced_paths()
        retention = pipeline.retention

        doomed = [
            f.path
            for f in stored
            if str(f.path) not in referenced
            and is_expired(f.mtime_ms, max_age_for_file(f.path.name, retention), now)
        ]
        deleted = 0
        for path in doomed:
            if await asyncio.to_thread(store.discard, path):
                deleted += 1
                logger.debug("orphan_file_deleted", account_id=pipeline.account_id, file=path.name)
        return deleted
