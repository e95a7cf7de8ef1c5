"""Backend sync hook.

After a batch stores new rows, the downstream backend is told to re-sync.
The request runs on a detached task with its own timeout; its outcome is
only logged and never affects batch processing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from kizo_indexer.config import DEFAULT_BACKEND_SYNC_URL

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_SOURCE = "indexer"


@dataclass
class SyncNotifierStats:
    """Counters for sync notifications."""

    scheduled: int = 0
    succeeded: int = 0
    failed: int = 0


class BackendSyncNotifier:
    """Fire-and-forget POST to the backend's sync endpoint.

    Example:
        ```python
        notifier = BackendSyncNotifier("http://localhost:3002/api/sync/trigger-full-sync")
        notifier.notify(total_items=12)  # returns immediately
        ...
        await notifier.aclose()
        ```
    """

    def __init__(
        self,
        url: str = DEFAULT_BACKEND_SYNC_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        source: str = DEFAULT_SOURCE,
        enabled: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            url: Endpoint to POST to.
            timeout: Per-request timeout in seconds.
            source: Value of the ``source`` field in the request body.
            enabled: When False, notify() is a no-op.
            transport: Optional httpx transport (used by tests).
        """
        self._url = url
        self._timeout = timeout
        self._source = source
        self._enabled = enabled
        self._transport = transport
        self._tasks: set[asyncio.Task[bool]] = set()
        self._stats = SyncNotifierStats()

    @property
    def url(self) -> str:
        return self._url

    @property
    def stats(self) -> SyncNotifierStats:
        return self._stats

    @property
    def pending(self) -> int:
        """Number of notifications still in flight."""
        return len(self._tasks)

    def build_payload(self) -> dict[str, str]:
        return {"source": self._source, "timestamp": datetime.now(UTC).isoformat()}

    def notify(self, total_items: int) -> asyncio.Task[bool] | None:
        """Schedule a sync notification if ``total_items`` is positive.

        Must be called from a running event loop. Returns the detached task,
        or None when nothing was scheduled.
        """
        if not self._enabled or total_items <= 0:
            return None

        logger.info("Triggering backend sync for %d new items: %s", total_items, self._url)
        task = asyncio.get_running_loop().create_task(self._send())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        self._stats.scheduled += 1
        return task

    async def _send(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=self.build_payload())
        except httpx.HTTPError as e:
            logger.warning("Failed to trigger backend sync: %s", e)
            self._stats.failed += 1
            return False

        if response.is_success:
            logger.info("Backend sync triggered successfully")
            self._stats.succeeded += 1
            return True

        logger.warning("Backend sync endpoint returned status: %d", response.status_code)
        self._stats.failed += 1
        return False

    def _on_done(self, task: asyncio.Task[bool]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._stats.failed += 1
            logger.warning("Backend sync task failed: %s", exc)

    async def aclose(self) -> None:
        """Wait for in-flight notifications, cancelling any that overrun the timeout."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_pending = await asyncio.wait(tasks, timeout=self._timeout)
        for task in still_pending:
            task.cancel()
        for task in still_pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
