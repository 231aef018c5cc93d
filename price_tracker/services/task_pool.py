import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Hashable, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Task = Tuple[Hashable, Callable[[], Awaitable[T]]]


@dataclass
class TaskResult(Generic[T]):
    key: Any
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskPool:
    """
    Fan-out/fan-in under a fixed concurrency ceiling.

    One instance can be shared by several `run` calls (crawl and enrichment)
    so the ceiling bounds every outbound call made through it.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)

    async def _run_one(self, key, factory: Callable[[], Awaitable[T]]) -> TaskResult[T]:
        async with self._semaphore:
            try:
                return TaskResult(key=key, value=await factory())
            except Exception as e:
                logger.error(f"Task {key} failed: {e}")
                return TaskResult(key=key, error=e)

    async def run(self, tasks: Sequence[Task]) -> list[TaskResult[T]]:
        """Results come back in submission order; a failed task never cancels its siblings."""
        return list(await asyncio.gather(*(self._run_one(key, factory) for key, factory in tasks)))

    @staticmethod
    def failures(results: Sequence[TaskResult]) -> list:
        return [r.key for r in results if not r.ok]

    @staticmethod
    def values(results: Sequence[TaskResult[T]]) -> list[T]:
        return [r.value for r in results if r.ok]
