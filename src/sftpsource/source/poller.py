"""
Poll loop: list, filter, materialize and dispatch remote files.

One cycle at a time. The ticker fires every ``poll_interval`` seconds; a tick
(or a manual ``run_cycle`` call) that finds a cycle already running is
dropped and counted, never queued.

Blocking session and download calls run in worker threads via
``asyncio.to_thread`` so the event loop stays responsive, but entries inside a
cycle are still handled one after another.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from sftpsource.exceptions import SftpSourceError
from sftpsource.source.commit import CommitCoordinator, CommitOutcome
from sftpsource.source.dispatcher import Dispatcher
from sftpsource.source.download import DownloadStrategy, build_download_strategy
from sftpsource.source.filters import FilterChain, build_filter_chain
from sftpsource.source.lister import DirectoryLister
from sftpsource.source.seen_store import SeenFileStore
from sftpsource.source.types import DispatchEnvelope, PollConfig, RemoteEntry, RemoteSession
from sftpsource.streaming.adapters.base import MessageAdapter
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.poller")


class PollerState(str, Enum):
    IDLE = "idle"
    LISTING = "listing"
    FILTERING = "filtering"
    DISPATCHING = "dispatching"


@dataclass
class CycleResult:
    """Counters and outcome of one poll cycle."""

    cycle: int
    started_at: datetime
    finished_at: datetime | None = None
    listed: int = 0
    rejected: int = 0
    accepted: int = 0
    committed: int = 0
    rolled_back: int = 0
    failed: int = 0
    skipped: int = 0
    cleanup_errors: int = 0
    aborted: bool = False
    error: str | None = None
    duration_s: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.aborted and self.failed == 0 and self.rolled_back == 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["ok"] = self.ok
        return data


CycleListener = Callable[[CycleResult], None]


class Poller:
    """
    Drives poll cycles over a remote directory.

    Per cycle: list the directory, run each entry through the filter chain
    until ``max_messages_per_poll`` entries have been accepted, then
    materialize each accepted entry and dispatch it inside a commit boundary.
    Entries after the cap are not filtered, so they are not marked seen and
    show up again next cycle.

    Listing failures abort the cycle and are reported in its result; the
    next tick retries. A failure on one entry abandons that entry only. An
    entry the dedup filter accepted stays recorded even if its download or
    delivery fails afterwards.
    """

    def __init__(
        self,
        session: RemoteSession,
        chain: FilterChain,
        strategy: DownloadStrategy,
        coordinator: CommitCoordinator,
        dispatcher: Dispatcher,
        config: PollConfig,
    ):
        self.session = session
        self.chain = chain
        self.strategy = strategy
        self.coordinator = coordinator
        self.dispatcher = dispatcher
        self.config = config
        self.lister = DirectoryLister(session, config.remote_separator)

        self.state = PollerState.IDLE
        self.cycles_run = 0
        self.dropped_ticks = 0
        self.last_result: CycleResult | None = None
        self._listeners: list[CycleListener] = []
        self._active = False
        self._stopping = asyncio.Event()
        self._ticker: asyncio.Task | None = None
        # task started by tick() that has not entered run_cycle yet
        self._tick_task: asyncio.Task | None = None
        # task currently running a cycle, however it was started
        self._cycle_task: asyncio.Task | None = None

    def add_listener(self, listener: CycleListener) -> None:
        """Call ``listener`` with every finished CycleResult."""
        self._listeners.append(listener)

    @property
    def is_running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def is_active(self) -> bool:
        return self._active

    async def run_cycle(self) -> CycleResult | None:
        """
        Run one poll cycle now.

        Returns None, and counts a dropped tick, if a cycle is already active.
        """
        if self._active:
            self.dropped_ticks += 1
            logger.debug(f"Poll tick dropped: cycle already active ({self.dropped_ticks} dropped so far)")
            return None

        self._active = True
        self._cycle_task = asyncio.current_task()
        self.cycles_run += 1
        result = CycleResult(cycle=self.cycles_run, started_at=datetime.now(timezone.utc))
        start = time.monotonic()
        try:
            await self._run(result)
        finally:
            self.state = PollerState.IDLE
            self._active = False
            self._cycle_task = None
            result.finished_at = datetime.now(timezone.utc)
            result.duration_s = time.monotonic() - start
            self.last_result = result

        self._report(result)
        return result

    async def _run(self, result: CycleResult) -> None:
        self.state = PollerState.LISTING
        try:
            entries = await asyncio.to_thread(self.lister.list, self.config.remote_dir)
        except SftpSourceError as e:
            result.aborted = True
            result.error = f"{type(e).__name__}: {e}"
            logger.error(f"Poll cycle {result.cycle} aborted listing {self.config.remote_dir}: {e}")
            return
        result.listed = len(entries)

        for index, entry in enumerate(entries):
            if self._stopping.is_set():
                result.skipped += len(entries) - index
                logger.info(f"Stop requested; skipping {len(entries) - index} remaining entries")
                break
            if not self.config.unbounded and result.accepted >= self.config.max_messages_per_poll:
                result.skipped += len(entries) - index
                break

            self.state = PollerState.FILTERING
            try:
                accepted = await asyncio.to_thread(self.chain.accept, entry)
            except SftpSourceError as e:
                result.failed += 1
                result.errors.append(f"{entry.full_path}: {e}")
                logger.error(f"Filtering {entry.full_path} failed: {e}")
                continue
            if not accepted:
                result.rejected += 1
                continue

            result.accepted += 1
            self.state = PollerState.DISPATCHING
            await self._dispatch_entry(entry, result)

    async def _dispatch_entry(self, entry: RemoteEntry, result: CycleResult) -> None:
        try:
            payload = await asyncio.to_thread(self.strategy.materialize, entry)
        except Exception as e:
            result.failed += 1
            result.errors.append(f"{entry.full_path}: {e}")
            logger.error(f"Could not materialize {entry.full_path}; it will not be retried: {e}")
            return

        envelope = DispatchEnvelope(payload=payload, source_entry=entry)
        await asyncio.to_thread(self.coordinator.delete_after_download, envelope)

        handle = self.coordinator.begin(envelope)
        outcome = await self.dispatcher.dispatch(envelope, handle)
        if outcome is CommitOutcome.COMMITTED:
            result.committed += 1
        else:
            result.rolled_back += 1
            result.errors.append(f"{entry.full_path}: delivery rolled back")
        if handle.cleanup_errors:
            result.cleanup_errors += len(handle.cleanup_errors)
            result.errors.extend(f"{entry.full_path}: {err}" for err in handle.cleanup_errors)

    def _report(self, result: CycleResult) -> None:
        # aborted cycles are logged where the listing failed
        if result.accepted or result.failed:
            logger.info(
                f"Poll cycle {result.cycle}: listed={result.listed} accepted={result.accepted} "
                f"committed={result.committed} rolled_back={result.rolled_back} failed={result.failed} "
                f"skipped={result.skipped} ({result.duration_s:.2f}s)"
            )
        elif not result.aborted:
            logger.debug(f"Poll cycle {result.cycle}: nothing new in {self.config.remote_dir}")

        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.warning(f"Cycle listener {listener!r} failed: {e}")

    def tick(self) -> bool:
        """
        Start a cycle in the background unless one is active.

        Returns False when the tick was dropped.
        """
        if self._active:
            self.dropped_ticks += 1
            logger.debug(f"Poll tick dropped: cycle already active ({self.dropped_ticks} dropped so far)")
            return False
        self._tick_task = asyncio.create_task(self._guarded_cycle())
        return True

    async def _guarded_cycle(self) -> None:
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Poll cycle failed unexpectedly: {e}", exc_info=True)

    async def start(self) -> None:
        """Start the ticker. Returns immediately; cycles run in the background."""
        if self.is_running:
            return
        self._stopping.clear()
        self._ticker = asyncio.create_task(self._tick_loop())
        logger.info(
            f"Polling {self.config.remote_dir} every {self.config.poll_interval}s "
            f"({'stream' if self.config.stream else 'copy'} mode)"
        )

    async def _tick_loop(self) -> None:
        if self.config.initial_delay > 0:
            await asyncio.sleep(self.config.initial_delay)
        while not self._stopping.is_set():
            self.tick()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.config.poll_interval)
            except asyncio.TimeoutError:
                continue

    async def stop(self) -> None:
        """
        Stop ticking. An in-flight cycle, whether started by the ticker or by
        a direct ``run_cycle`` call, finishes its current entry, skips the
        rest, and is awaited before this returns.
        """
        self._stopping.set()
        if self._ticker is not None:
            self._ticker.cancel()
            await asyncio.gather(self._ticker, return_exceptions=True)
            self._ticker = None

        current = asyncio.current_task()
        pending = {
            task
            for task in (self._tick_task, self._cycle_task)
            if task is not None and task is not current and not task.done()
        }
        if pending:
            # asyncio.wait leaves the cycle running if stop() itself is cancelled
            await asyncio.wait(pending)
        self._tick_task = None
        logger.info(f"Poller stopped after {self.cycles_run} cycle(s)")

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "running": self.is_running,
            "active": self._active,
            "cycles_run": self.cycles_run,
            "dropped_ticks": self.dropped_ticks,
            "remote_dir": self.config.remote_dir,
            "mode": "stream" if self.config.stream else "copy",
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


def build_poller(
    session: RemoteSession,
    store: SeenFileStore,
    adapter: MessageAdapter,
    config: PollConfig,
    *,
    topic: str = "output",
) -> Poller:
    """Wire the standard pipeline for ``config`` around a session, store and adapter."""
    chain = build_filter_chain(
        store,
        filename_pattern=config.filename_pattern,
        filename_regex=config.filename_regex,
        separator=config.remote_separator,
    )
    return Poller(
        session=session,
        chain=chain,
        strategy=build_download_strategy(session, config),
        coordinator=CommitCoordinator(session, config),
        dispatcher=Dispatcher(adapter, topic=topic, payload_mode=config.payload_mode, separator=config.remote_separator),
        config=config,
    )
