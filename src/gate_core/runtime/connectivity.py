"""Connectivity watcher emitting on every connected/disconnected transition."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

import aiohttp


logger = logging.getLogger(__name__)

StatusCallback = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityWatcher:
    """Long-lived probe loop.

    The first observed status is always reported, then only changes. Hosts
    with native reachability notifications can push status through
    ``report()`` instead of (or in addition to) probing.
    """

    DEFAULT_PROBE_URL = "https://clients3.google.com/generate_204"
    PROBE_INTERVAL_SECONDS = 5.0
    PROBE_TIMEOUT_SECONDS = 5.0

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        probe_url: str = DEFAULT_PROBE_URL,
        interval: float = PROBE_INTERVAL_SECONDS,
        probe: Optional[Probe] = None,
        on_change: Optional[StatusCallback] = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            session: aiohttp session used by the default HTTP probe
            probe_url: URL answered quickly by any reachable network
            interval: Seconds between probes
            probe: Optional replacement probe coroutine
            on_change: Receives True/False on each transition
        """
        if probe is None and session is None:
            raise ValueError("ConnectivityWatcher needs a session or a probe")

        self.session = session
        self.probe_url = probe_url
        self.interval = interval
        self._probe = probe or self._http_probe
        self.on_change = on_change
        self._last: Optional[bool] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def connected(self) -> Optional[bool]:
        return self._last

    def start(self) -> None:
        """Start probing; a second call is a no-op."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Connectivity watcher started (interval=%.1fs)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Connectivity watcher stopped")

    def report(self, connected: bool) -> None:
        """Record an observed status, notifying on change."""
        if connected == self._last:
            return
        self._last = connected
        logger.info("Connectivity changed: connected=%s", connected)
        if self.on_change is not None:
            self.on_change(connected)

    async def _run(self) -> None:
        while True:
            self.report(await self._probe())
            await asyncio.sleep(self.interval)

    async def _http_probe(self) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.PROBE_TIMEOUT_SECONDS)
        try:
            async with self.session.head(
                self.probe_url, timeout=timeout, allow_redirects=False
            ) as resp:
                return resp.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Connectivity probe failed: %s", e)
            return False
