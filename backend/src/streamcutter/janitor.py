"""
Background reclamation of stale temp files.

The janitor never coordinates with in-flight cuts beyond the namespace's
reservation table: anything older than the retention age that no cut still
holds is deleted. The retention age must stay comfortably above the cut
timeout for this to be safe.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from streamcutter.models import SweepReport
from streamcutter.temp_files import TempNamespace

logger = logging.getLogger(__name__)


class TempJanitor:
    """Periodic sweep over a TempNamespace."""

    def __init__(
        self,
        namespace: TempNamespace,
        *,
        retention_age_seconds: float,
        interval_seconds: float,
    ):
        self.namespace = namespace
        self.retention_age_seconds = retention_age_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.sweeps_completed = 0
        self.sweeps_failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self) -> SweepReport:
        """Delete every unreserved file older than the retention age."""
        report = SweepReport()
        for path, age in self.namespace.list_with_ages():
            report.scanned += 1
            if age <= self.retention_age_seconds:
                continue
            if self.namespace.is_active(path):
                report.skipped += 1
                logger.warning("janitor.skip.active path=%s age=%.0fs", path, age)
                continue
            try:
                deleted = self.namespace.delete(path)
            except OSError as exc:
                report.failed += 1
                logger.error("janitor.delete.failed path=%s error=%s", path, exc)
                continue
            if deleted:
                report.deleted += 1
                logger.info("janitor.deleted path=%s age=%.0fs", path, age)
        return report

    async def sweep_async(self) -> SweepReport:
        return await asyncio.to_thread(self.sweep)

    async def _run(self, stop_event: asyncio.Event) -> None:
        logger.info(
            "janitor.started interval=%.0fs retention=%.0fs dir=%s",
            self.interval_seconds,
            self.retention_age_seconds,
            self.namespace.temp_dir,
        )
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            try:
                report = await self.sweep_async()
            except Exception:
                self.sweeps_failed += 1
                logger.exception("janitor.sweep.failed")
                continue
            self.sweeps_completed += 1
            logger.info(
                "janitor.sweep scanned=%d deleted=%d skipped=%d failed=%d",
                report.scanned,
                report.deleted,
                report.skipped,
                report.failed,
            )
        logger.info("janitor.stopped")

    def start(self) -> asyncio.Task:
        """Start the loop on the running event loop; the first sweep runs after one interval."""
        if self.running:
            raise RuntimeError("Janitor already running.")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stop_event), name="streamcutter-janitor")
        return self._task

    async def stop(self) -> None:
        """Stop waiting for the next tick; a sweep in progress is allowed to finish."""
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None
