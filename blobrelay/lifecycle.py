"""
File lifecycle manager.

Sweeps the public area once at startup and then every sweep interval. Files older
than max_age are renamed into the archive area and their media keys are dropped
from the resolution map, so later messages cannot resolve to a dead public URL.
The same tick evicts pending messages that have waited longer than the pending TTL.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from blobrelay.blob_store import PUBLIC, BlobStore, BlobStoreError
from blobrelay.hub import ConnectionHub
from blobrelay.state import RelayState

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    archived: List[str] = field(default_factory=list)
    invalidated_keys: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    kept: int = 0


class FileLifecycleManager:

    def __init__(
        self,
        store: BlobStore,
        state: RelayState,
        url_for: Callable[[str], str],
        *,
        hub: Optional[ConnectionHub] = None,
        interval: float = 300.0,
        max_age: float = 600.0,
        pending_ttl: Optional[float] = 600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.state = state
        self.url_for = url_for
        self.hub = hub
        self.interval = interval
        self.max_age = max_age
        self.pending_ttl = pending_ttl
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> SweepReport:
        report = SweepReport()
        now = self.clock()
        for name in self.store.names(PUBLIC):
            try:
                age = self.store.age(name, now)
            except OSError as e:
                logger.warning("skipping %s: cannot stat (%s)", name, e)
                report.failed.append(name)
                continue
            if age <= self.max_age:
                report.kept += 1
                continue
            async with self.state.lock:
                try:
                    self.store.archive(name)
                except BlobStoreError as e:
                    logger.error("skipping %s: %s", name, e)
                    report.failed.append(name)
                    continue
                keys = self.state.media.invalidate_by_url(self.url_for(name))
            report.archived.append(name)
            report.invalidated_keys.extend(keys)
            logger.info("archived %s (age %.0fs)", name, age)
        return report

    async def run_once(self) -> Optional[SweepReport]:
        """One scheduled tick. Never raises, so a bad tick cannot stop the schedule."""
        report = None
        try:
            report = await self.sweep()
            if report.archived or report.failed:
                logger.info("sweep done: %d archived, %d failed, %d kept",
                            len(report.archived), len(report.failed), report.kept)
        except Exception:
            logger.exception("file sweep failed")
        if self.hub is not None and self.pending_ttl is not None:
            try:
                await self.hub.evict_expired(self.pending_ttl)
            except Exception:
                logger.exception("pending eviction failed")
        return report

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info("file lifecycle started (every %.0fs, max age %.0fs)", self.interval, self.max_age)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("file lifecycle stopped")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
