# utils/background.py
import asyncio
import logging

logger = logging.getLogger("background")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)


class BackgroundTasks:
    """
    Runner for best-effort writes that must stay off the request path.

    Cache writes, cache hit counters, search-demand counters and translation
    cache writes are submitted here instead of being awaited. Each coroutine
    runs as its own task; a failure is logged to the ``background`` logger
    and never reaches the code that submitted it.

    Note:
        Tasks are referenced from ``_tasks`` until they finish so the event
        loop cannot garbage-collect them mid-flight. ``drain()`` waits for
        everything pending and is used on shutdown and in tests.
    """

    def __init__(self, name="background"):
        self.name = name
        self._tasks = set()
        self.failures = 0

    def submit(self, coro, label=None):
        """
        Schedule a coroutine and return immediately.

        Args:
            coro (Coroutine): The awaitable to run in the background
            label (str, optional): Name used in log lines for this task

        Returns:
            asyncio.Task: The scheduled task
        """
        task = asyncio.get_running_loop().create_task(coro)
        task.set_name(label or f"{self.name}-task")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failures += 1
            logger.error(
                f"Background task {task.get_name()} failed: {exc!r}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @property
    def pending(self):
        return len(self._tasks)

    async def drain(self):
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
