"""Background hot reload of the policy file."""

import asyncio
import os
from typing import Optional

from limiter.app.core.logging import get_logger
from limiter.app.exceptions import RateLimiterException
from limiter.app.services.policy.resolver import PolicyResolver

logger = get_logger(__name__)


class PolicyReloader:
    """Polls the policy file's modification time and reloads on change.

    Usage:
        reloader = PolicyReloader(resolver, "/etc/limiter/policies.json", 10.0)
        await reloader.start()
        ...
        await reloader.stop()
    """

    def __init__(self, resolver: PolicyResolver, path: str, interval: float = 10.0):
        """Initialize the reloader.

        Args:
            resolver: Resolver whose snapshot is replaced
            path: Policy file to watch
            interval: Seconds between checks
        """
        self._resolver = resolver
        self._path = path
        self._interval = interval
        self._last_mtime: Optional[float] = self._current_mtime()
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def _current_mtime(self) -> Optional[float]:
        try:
            return os.stat(self._path).st_mtime
        except OSError:
            return None

    def check_once(self) -> bool:
        """Reload if the file changed since the last check.

        Returns:
            True if a new snapshot was installed
        """
        mtime = self._current_mtime()
        if mtime is None:
            logger.warning(f"Policy file {self._path} is not readable, keeping v{self._resolver.version}")
            return False
        if mtime == self._last_mtime:
            return False

        self._last_mtime = mtime
        try:
            self._resolver.reload_from_file(self._path)
        except RateLimiterException as e:
            logger.error(
                f"Rejected policy file change, keeping v{self._resolver.version}: {e}"
            )
            return False
        return True

    async def start(self) -> None:
        """Start the background polling task."""
        if self._task is not None:
            logger.debug("Policy reloader already running")
            return

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(f"Started policy reloader for {self._path} (interval: {self._interval}s)")

    async def stop(self) -> None:
        """Stop the background polling task."""
        if self._task is None:
            return

        self._stop_event.set()

        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Policy reloader did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped policy reloader")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                self.check_once()
