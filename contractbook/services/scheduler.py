"""
Background Scheduler Service

Fires periodic background tasks on a fixed wall-clock interval, chiefly the
contract verification cycle (reference cadence: once a minute).

Ticks are launched on deadlines (start + k * interval) without waiting for
the previous run to finish. Whether an overlapping run does any work is up
to the task itself; the verification worker's single-flight lock turns such
a tick into a no-op. Failures are logged and counted, and the task keeps
firing for as long as the scheduler runs.
"""

import asyncio
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from contractbook.config import Settings, get_settings
from contractbook.services.verification_worker import VerificationWorker

logger = structlog.get_logger(__name__)

VERIFICATION_TASK = "contract_verification"


@dataclass
class ScheduledTask:
    """A periodic task and its run counters."""

    name: str
    func: Callable[[], Coroutine[Any, Any, Any]]
    interval_seconds: float
    initial_delay_seconds: float = 0.0
    ticks: int = 0
    run_count: int = 0
    error_count: int = 0
    consecutive_failures: int = 0
    last_run: datetime | None = None
    last_error: str | None = None
    in_flight: set[asyncio.Task[None]] = field(default_factory=set)


class BackgroundScheduler:
    """Asyncio scheduler running each registered task on its own deadline loop."""

    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._started_at: datetime | None = None
        self._shutdown_event = asyncio.Event()
        self._logger = logger.bind(service="scheduler")

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    def register(
        self,
        name: str,
        func: Callable[[], Coroutine[Any, Any, Any]],
        interval_seconds: float,
        initial_delay_seconds: float = 0.0,
    ) -> None:
        """
        Register a periodic task.

        Args:
            name: Unique task name
            func: Async function fired on every tick
            interval_seconds: Distance between tick deadlines
            initial_delay_seconds: Delay before the first tick

        Raises:
            ValueError: If the name is taken or the interval is not positive
        """
        if name in self._tasks:
            raise ValueError(f"Task already registered: {name}")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")

        self._tasks[name] = ScheduledTask(
            name=name,
            func=func,
            interval_seconds=interval_seconds,
            initial_delay_seconds=initial_delay_seconds,
        )
        self._logger.info("task_registered", name=name, interval_seconds=interval_seconds)

    async def start(self) -> None:
        """Start one deadline loop per registered task."""
        if self.is_running:
            self._logger.warning("scheduler_already_running")
            return

        self._started_at = datetime.now(UTC)
        self._shutdown_event.clear()
        self._logger.info("scheduler_starting", tasks=list(self._tasks))

        for name, task in self._tasks.items():
            self._loops[name] = asyncio.create_task(
                self._task_loop(task),
                name=f"scheduler_{name}",
            )

    async def stop(self) -> None:
        """Stop the loops and cancel any runs still in flight."""
        if not self.is_running:
            return

        self._logger.info("scheduler_stopping")
        self._shutdown_event.set()

        pending: list[asyncio.Task[None]] = list(self._loops.values())
        for task in self._tasks.values():
            pending.extend(task.in_flight)
        for running in pending:
            running.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        self._loops.clear()
        self._logger.info("scheduler_stopped", **self.get_stats())
        self._started_at = None

    async def _task_loop(self, task: ScheduledTask) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + task.initial_delay_seconds

        while not self._shutdown_event.is_set():
            delay = deadline - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
                    return
                except TimeoutError:
                    pass

            task.ticks += 1
            run = asyncio.create_task(self._run(task), name=f"scheduler_{task.name}_run")
            task.in_flight.add(run)
            run.add_done_callback(task.in_flight.discard)

            # Deadlines missed while the loop was stalled are dropped, not replayed
            deadline += task.interval_seconds
            now = loop.time()
            while deadline <= now:
                deadline += task.interval_seconds

    async def _run(self, task: ScheduledTask) -> None:
        try:
            await task.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.error_count += 1
            task.consecutive_failures += 1
            task.last_error = str(e)
            self._logger.error(
                "task_error",
                name=task.name,
                error=str(e),
                error_count=task.error_count,
                consecutive_failures=task.consecutive_failures,
            )
            return

        task.run_count += 1
        task.consecutive_failures = 0
        task.last_run = datetime.now(UTC)

    def get_stats(self) -> dict[str, Any]:
        """Per-task counters, logged when the scheduler stops."""
        return {
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "tasks": {
                name: {
                    "interval_seconds": task.interval_seconds,
                    "ticks": task.ticks,
                    "run_count": task.run_count,
                    "error_count": task.error_count,
                    "consecutive_failures": task.consecutive_failures,
                    "last_error": task.last_error,
                }
                for name, task in self._tasks.items()
            },
        }


def setup_scheduler(
    worker: VerificationWorker,
    settings: Settings | None = None,
    scheduler: BackgroundScheduler | None = None,
) -> BackgroundScheduler:
    """
    Set up a scheduler running the verification cycle.

    Args:
        worker: Worker whose run_cycle() is fired on every tick
        settings: Settings providing the interval
        scheduler: Existing scheduler to register on
    """
    settings = settings or get_settings()
    scheduler = scheduler or BackgroundScheduler()

    scheduler.register(
        name=VERIFICATION_TASK,
        func=_create_verification_task(worker),
        interval_seconds=settings.verification_interval_seconds,
    )
    return scheduler


def _create_verification_task(worker: VerificationWorker) -> Callable[[], Coroutine[Any, Any, None]]:
    async def task() -> None:
        report = await worker.run_cycle()
        if report is None:
            logger.debug("scheduled_verification_skipped")

    return task
