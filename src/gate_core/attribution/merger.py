"""Attribution merger: folds deep-link data into the conversion payload.

Conversion (tracking) data and deep-link (linking) data arrive from two
independent SDK callbacks in either order, or not at all. The merger waits a
short debounce window for the second source and then emits one combined
payload to the tracking consumer.
"""
import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from ..core.model import merge_linking
from ..storage.base import PersistenceGateway


logger = logging.getLogger(__name__)

PayloadConsumer = Callable[[dict[str, Any]], None]


class AttributionMerger:
    """Buffers both sources and emits the merged payload at most once.

    The merged flag is persisted: once deep-link data has been folded into a
    conversion payload, later deep-link callbacks (including ones replayed on
    the next launch) are ignored.
    """

    MERGE_WINDOW_SECONDS = 2.5

    def __init__(
        self,
        on_tracking: PayloadConsumer,
        on_linking: PayloadConsumer,
        flag_store: PersistenceGateway,
        merge_window: float = MERGE_WINDOW_SECONDS,
    ) -> None:
        """Initialize the merger.

        Args:
            on_tracking: Receives the combined payload (exactly once)
            on_linking: Receives each accepted deep-link payload
            flag_store: Gateway holding the persisted merged flag
            merge_window: Seconds to wait for deep-link data after conversion data
        """
        self.on_tracking = on_tracking
        self.on_linking = on_linking
        self.flag_store = flag_store
        self.merge_window = merge_window

        self._tracking: dict[str, Any] = {}
        self._linking: dict[str, Any] = {}
        self._merged = False
        self._emitted = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def merged(self) -> bool:
        return self._merged

    @property
    def emitted(self) -> bool:
        return self._emitted

    @property
    def accepts_linking(self) -> bool:
        """False once deep-link data was merged or the payload was emitted."""
        return not (self._merged or self._emitted)

    async def restore(self) -> None:
        """Load the persisted merged flag."""
        try:
            self._merged = await self.flag_store.is_attribution_merged()
        except Exception as e:
            logger.warning("Failed to read attribution merged flag: %s", e)
        logger.debug("Attribution merger restored: merged=%s", self._merged)

    def receive_tracking(self, data: Mapping[str, Any]) -> None:
        """Buffer conversion data and (re)start the debounce window."""
        self._tracking = dict(data)
        logger.info("Conversion data received: %s keys", len(self._tracking))
        self._schedule_timer()
        if self._linking:
            self._merge()

    def receive_linking(self, data: Mapping[str, Any]) -> None:
        """Buffer deep-link data, forward it, and merge if conversion data is in."""
        if not self.accepts_linking:
            logger.debug(
                "Deep-link data ignored: merged=%s, emitted=%s", self._merged, self._emitted
            )
            return

        self._linking = dict(data)
        logger.info("Deep-link data received: %s keys", len(self._linking))
        self.on_linking(dict(self._linking))
        self._cancel_timer()
        if self._tracking:
            self._merge()

    def close(self) -> None:
        """Cancel the debounce timer and pending flag writes."""
        self._cancel_timer()
        for task in list(self._tasks):
            task.cancel()

    def _schedule_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.merge_window, self._on_window_expired)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_window_expired(self) -> None:
        self._timer = None
        logger.debug("Merge window expired after %.1fs", self.merge_window)
        self._merge()

    def _merge(self) -> None:
        self._cancel_timer()
        if self._emitted:
            return

        combined = merge_linking(self._tracking, self._linking)
        self._emitted = True

        if self._linking:
            self._merged = True
            self._spawn(self._persist_merged())

        logger.info(
            "Emitting merged attribution: %s keys (deep-link=%s)",
            len(combined),
            bool(self._linking),
        )
        self.on_tracking(combined)

    async def _persist_merged(self) -> None:
        try:
            await self.flag_store.mark_attribution_merged()
        except Exception as e:
            logger.warning("Failed to persist attribution merged flag: %s", e)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
