# scheduler.py
# Description: Cancellable, keyed deferred tasks used for per-id debouncing
#
# Imports
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional
#
# Third-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Classes:

class CancelHandle:
    """Handle to one scheduled call; cancelling is idempotent."""

    def __init__(self, key: str, task: asyncio.Task):
        self.key = key
        self.task = task

    def cancel(self) -> bool:
        if self.task.done():
            return False
        return self.task.cancel()

    @property
    def done(self) -> bool:
        return self.task.done()


class DeferredScheduler:
    """
    Runs at most one pending call per key.

    Scheduling a key that already has a pending call cancels that call first,
    so only the most recent call for a key can ever fire.
    """

    def __init__(self):
        self._handles: Dict[str, CancelHandle] = {}

    def schedule(self, key: str, delay_ms: float, fn: Callable[[], Awaitable[None]]) -> CancelHandle:
        """Run `fn` after `delay_ms`, replacing any pending call for `key`. Needs a running event loop."""
        self.cancel(key)
        task = asyncio.get_running_loop().create_task(self._run_later(key, delay_ms, fn))
        handle = CancelHandle(key, task)
        self._handles[key] = handle
        return handle

    async def _run_later(self, key: str, delay_ms: float, fn: Callable[[], Awaitable[None]]) -> None:
        try:
            await asyncio.sleep(delay_ms / 1000.0)
        except asyncio.CancelledError:
            return
        # Past the sleep the call counts as fired; drop the handle before running
        current = self._handles.get(key)
        if current is not None and current.task is asyncio.current_task():
            del self._handles[key]
        try:
            await fn()
        except Exception as e:
            logger.error(f"Deferred call for '{key}' failed: {e}")

    def cancel(self, key: str) -> bool:
        """Cancel the pending call for `key`, if any."""
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        return handle.cancel()

    def cancel_all(self) -> int:
        cancelled = 0
        for key in list(self._handles):
            if self.cancel(key):
                cancelled += 1
        return cancelled

    def pending(self, key: str) -> bool:
        handle = self._handles.get(key)
        return handle is not None and not handle.done

    def pending_keys(self) -> List[str]:
        return [key for key, handle in self._handles.items() if not handle.done]

    def get_handle(self, key: str) -> Optional[CancelHandle]:
        return self._handles.get(key)

#
# End of scheduler.py
########################################################################################################################
