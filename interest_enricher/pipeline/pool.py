"""Bounded asyncio worker pool."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

TaskFactory = Callable[[], Awaitable[T]]


@dataclass
class TaskResult(Generic[T]):
    """Outcome of one submitted task."""

    index: int
    value: Optional[T] = None
    error: Optional[BaseException] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


class ConcurrencyPool:
    """Run coroutine factories with at most ``max_concurrency`` in flight.

    Every submitted task yields exactly one ``TaskResult``, in submission
    order. Task exceptions are captured, never raised. ``cancel()`` stops
    admission of tasks that have not started; running tasks are left to
    finish.

    Usage:
        pool = ConcurrencyPool(max_concurrency=5)
        results = await pool.execute([lambda: fetch(a), lambda: fetch(b)])
    """

    def __init__(self, max_concurrency: int = 5, task_timeout: Optional[float] = None):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.task_timeout = task_timeout
        self._cancelled = False
        self._in_flight = 0
        self._peak_in_flight = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    def cancel(self) -> None:
        """Stop admitting new tasks."""
        self._cancelled = True

    async def execute(
        self,
        tasks: Sequence[TaskFactory],
        max_concurrency: Optional[int] = None,
        *,
        should_admit: Optional[Callable[[], bool]] = None,
        on_result: Optional[Callable[[TaskResult], Any]] = None,
    ) -> list[TaskResult]:
        """
        Run all tasks under the concurrency bound.

        Args:
            tasks: Zero-argument callables returning awaitables
            max_concurrency: Override the pool's bound for this call
            should_admit: Checked right before each task starts; False
                cancels the pool
            on_result: Called with each result as soon as it is known.
                An exception raised here cancels the pool and is re-raised
                once running tasks have finished.

        Returns:
            One TaskResult per task, in submission order
        """
        limit = max_concurrency or self.max_concurrency
        semaphore = asyncio.Semaphore(limit)
        fatal: list[BaseException] = []

        def deliver(result: TaskResult) -> None:
            if on_result is None or fatal:
                return
            try:
                on_result(result)
            except Exception as e:
                fatal.append(e)
                self.cancel()

        async def run(index: int, factory: TaskFactory) -> TaskResult:
            async with semaphore:
                if not self._cancelled and should_admit is not None and not should_admit():
                    self.cancel()
                if self._cancelled:
                    result = TaskResult(index=index, cancelled=True)
                else:
                    self._in_flight += 1
                    self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
                    try:
                        if self.task_timeout is not None:
                            value = await asyncio.wait_for(factory(), self.task_timeout)
                        else:
                            value = await factory()
                        result = TaskResult(index=index, value=value)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.debug("Pool task %d failed: %s", index, e)
                        result = TaskResult(index=index, error=e)
                    finally:
                        self._in_flight -= 1

            deliver(result)
            return result

        results = await asyncio.gather(*(run(i, factory) for i, factory in enumerate(tasks)))

        if fatal:
            raise fatal[0]
        return list(results)
