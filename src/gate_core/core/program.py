"""Controller: owns the model and serializes every message through update()."""
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from ..runtime.executor import Runtime, utc_now
from .messages import Boot, Cmd, Msg
from .model import Model, ViewState
from .update import update


logger = logging.getLogger(__name__)

Subscriber = Callable[[Model, ViewState], None]


class Program:
    """Single consumer of gate messages.

    Messages from the runtime, the attribution merger and the host surface
    all go through ``send()`` into one queue. The consumer task applies them
    in delivery order, publishes the derived view state and hands the
    resulting command to the runtime.
    """

    def __init__(
        self,
        runtime: Runtime,
        device_id: str = "",
        clock: Callable[[], datetime] = utc_now,
        model: Optional[Model] = None,
    ) -> None:
        """Initialize the controller.

        Args:
            runtime: Effect executor; its message channel is bound to this program
            device_id: Attribution provider device identifier
            clock: Time source for deriving the view state
            model: Optional starting model (defaults to the initial model)
        """
        self.runtime = runtime
        self.clock = clock
        self.model = model or Model(device_id=device_id)
        self.view_state = ViewState.from_model(self.model, clock())

        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._subscribers: list[Subscriber] = []

        runtime.send_msg = self.send

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    def subscribe(self, subscriber: Subscriber) -> None:
        """Register a callback receiving (model, view state) after each message."""
        self._subscribers.append(subscriber)

    def send(self, msg: Msg) -> None:
        """Queue a message for the consumer. Safe from any task."""
        self._queue.put_nowait(msg)

    def dispatch(self, msg: Msg) -> Cmd:
        """Apply one message synchronously and execute its command."""
        previous = self.model.stage
        new_model, cmd = update(msg, self.model)

        self.model = new_model
        self.view_state = ViewState.from_model(new_model, self.clock())

        if new_model.stage is not previous:
            logger.info(
                "Stage %s -> %s on %s",
                previous.value,
                new_model.stage.value,
                type(msg).__name__,
            )
        else:
            logger.debug("Handled %s (stage=%s)", type(msg).__name__, previous.value)

        for subscriber in list(self._subscribers):
            try:
                subscriber(new_model, self.view_state)
            except Exception as e:
                logger.error("View subscriber failed: %s", e, exc_info=True)

        self.runtime.execute(cmd)
        return cmd

    async def start(self) -> None:
        """Start consuming and send Boot."""
        if self.running:
            return
        self._consumer = asyncio.get_running_loop().create_task(self._consume())
        self.send(Boot())
        logger.info("Gate program started")

    async def drain(self) -> None:
        """Wait until every queued message has been applied."""
        await self._queue.join()

    async def stop(self) -> None:
        """Stop consuming and shut the runtime down."""
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None
        await self.runtime.shutdown()
        logger.info("Gate program stopped at stage=%s", self.model.stage.value)

    async def _consume(self) -> None:
        while True:
            msg = await self._queue.get()
            try:
                self.dispatch(msg)
            except Exception as e:
                logger.error(
                    "Failed to handle %s: %s", type(msg).__name__, e, exc_info=True
                )
            finally:
                self._queue.task_done()
