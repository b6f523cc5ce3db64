"""
Monitor Scheduler
Independent periodic cadences on the asyncio loop.

Each cadence owns a timer loop and at most one in-flight tick. A tick that
comes due while the previous one is still running is skipped, not queued.
A failing job is logged and the cadence keeps its schedule.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dbpulse.core.logging import LoggerMixin
from dbpulse.monitoring.errors import SchedulerError


Job = Callable[[], Awaitable[Any]]


class SchedulerState(Enum):
    """Scheduler lifecycle"""
    STOPPED = "stopped"
    RUNNING = "running"


class CadenceState(Enum):
    """Per-cadence tick state"""
    IDLE = "idle"
    TICKING = "ticking"


@dataclass
class CadenceStats:
    """Counters for one cadence"""
    runs: int = 0
    failures: int = 0
    skipped: int = 0
    last_duration: float = 0.0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'runs': self.runs,
            'failures': self.failures,
            'skipped': self.skipped,
            'last_duration': self.last_duration,
            'last_error': self.last_error,
        }


class Cadence(LoggerMixin):
    """A named job repeated every ``interval`` seconds"""

    def __init__(self, name: str, interval: float, job: Job, run_immediately: bool = False):
        if interval <= 0:
            raise ValueError(f"Cadence {name} needs a positive interval")
        self.name = name
        self.interval = interval
        self.job = job
        self.run_immediately = run_immediately
        self.stats = CadenceStats()
        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def state(self) -> CadenceState:
        if self._inflight is not None and not self._inflight.done():
            return CadenceState.TICKING
        return CadenceState.IDLE

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop(), name=f"cadence:{self.name}")
        self.logger.debug(f"Cadence {self.name} scheduled every {self.interval}s")

    def trigger(self) -> Optional[asyncio.Task]:
        """Start a tick now unless one is already running; returns the tick task"""
        if self.state == CadenceState.TICKING:
            self.stats.skipped += 1
            self.logger.debug(f"Cadence {self.name} still running, tick skipped")
            return None
        self._inflight = asyncio.create_task(self._run_job(), name=f"tick:{self.name}")
        return self._inflight

    async def _run_loop(self) -> None:
        if self.run_immediately:
            self.trigger()
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                self.trigger()

    async def _run_job(self) -> None:
        started = time.perf_counter()
        try:
            await self.job()
            self.stats.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failures += 1
            self.stats.last_error = str(e)
            self.logger.error(f"Scheduled job {self.name} failed: {e}", exc_info=True)
        finally:
            self.stats.runs += 1
            self.stats.last_duration = time.perf_counter() - started

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Stop ticking, then give the in-flight tick up to ``timeout`` to finish"""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        inflight = self._inflight
        if inflight is None or inflight.done():
            return
        done, _ = await asyncio.wait([inflight], timeout=timeout)
        if not done:
            self.logger.warning(f"Cadence {self.name} did not drain in time; cancelling")
            inflight.cancel()
            await asyncio.gather(inflight, return_exceptions=True)


class MonitorScheduler(LoggerMixin):
    """
    Runs a fixed set of cadences.

    ``Stopped -> Running`` on start, ``Running -> Stopped`` once every
    cadence has drained on stop.
    """

    def __init__(self):
        self._cadences: Dict[str, Cadence] = {}
        self._state = SchedulerState.STOPPED

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cadences(self) -> List[Cadence]:
        return list(self._cadences.values())

    def get(self, name: str) -> Cadence:
        return self._cadences[name]

    def add_cadence(
        self,
        name: str,
        interval: float,
        job: Job,
        run_immediately: bool = False
    ) -> Cadence:
        if self._state == SchedulerState.RUNNING:
            raise SchedulerError(f"Cannot add cadence {name} while the scheduler is running")
        if name in self._cadences:
            raise SchedulerError(f"Cadence {name} already registered")
        cadence = Cadence(name, interval, job, run_immediately)
        self._cadences[name] = cadence
        return cadence

    def start(self) -> None:
        if self._state == SchedulerState.RUNNING:
            self.logger.warning("Scheduler is already running")
            return
        for cadence in self._cadences.values():
            cadence.start()
        self._state = SchedulerState.RUNNING
        self.logger.info(
            f"Scheduler started with {len(self._cadences)} cadences",
            extra={"cadences": list(self._cadences)}
        )

    async def stop(self, timeout: Optional[float] = None) -> None:
        if self._state == SchedulerState.STOPPED:
            return
        await asyncio.gather(*(c.stop(timeout) for c in self._cadences.values()))
        self._state = SchedulerState.STOPPED
        self.logger.info("Scheduler stopped")

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: c.stats.to_dict() for name, c in self._cadences.items()}
