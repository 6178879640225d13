"""
Maintenance scheduler.
Uses APScheduler to sweep expired cache entries and log metric snapshots.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from docgate.runtime import Runtime


class MaintenanceScheduler:
    """Interval jobs that keep the runtime tidy and observable."""

    def __init__(
        self,
        runtime: Runtime,
        sweep_interval_seconds: float = 60.0,
        snapshot_interval_seconds: float = 30.0,
    ):
        self.runtime = runtime
        self.sweep_interval_seconds = sweep_interval_seconds
        self.snapshot_interval_seconds = snapshot_interval_seconds
        self.scheduler = AsyncIOScheduler()
        self._is_running = False

    async def sweep_cache_job(self) -> int:
        """Purge expired cache entries."""
        try:
            removed = self.runtime.cache.cleanup_expired()
        except Exception:
            logger.exception("Error in scheduled cache sweep")
            return 0
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
        return removed

    async def snapshot_metrics_job(self) -> None:
        """Log a compact metrics line, as a dashboard poll would see it."""
        try:
            snapshot = self.runtime.metrics_snapshot()
        except Exception:
            logger.exception("Error in scheduled metrics snapshot")
            return

        perf = snapshot["performance"]
        breakers = snapshot["circuit_breakers"]
        logger.info(
            f"Metrics: ops={perf['total_operations']} "
            f"avg={perf['average_duration']:.1f}ms "
            f"success={perf['success_rate']:.1f}% "
            f"cache_entries={snapshot['cache']['total_entries']} "
            f"errors={snapshot['errors']['total_errors']} "
            f"open_circuits={breakers['open_circuit_breakers']}"
        )

    def start(self) -> None:
        """Start the scheduler (requires a running event loop)."""
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        self.scheduler.add_job(
            self.sweep_cache_job,
            trigger="interval",
            seconds=self.sweep_interval_seconds,
            id="cache_sweep_job",
            name="Cache Expiry Sweep",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.snapshot_metrics_job,
            trigger="interval",
            seconds=self.snapshot_interval_seconds,
            id="metrics_snapshot_job",
            name="Metrics Snapshot",
            replace_existing=True,
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            f"Maintenance scheduler started: sweep every {self.sweep_interval_seconds}s, "
            f"snapshot every {self.snapshot_interval_seconds}s"
        )

    def stop(self) -> None:
        """Stop the scheduler."""
        if not self._is_running:
            logger.warning("Maintenance scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    def is_running(self) -> bool:
        return self._is_running
