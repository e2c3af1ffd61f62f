"""Adapters for the system permission prompt and push registration."""
import asyncio
import logging
from typing import Optional, Protocol

from ..remote.exceptions import PermissionDeniedError


logger = logging.getLogger(__name__)


class PermissionPrompt(Protocol):
    """Shows the platform notification permission prompt once."""

    async def request(self) -> bool: ...


class NotificationRegistrar(Protocol):
    """Registers the device for remote notifications."""

    async def register(self) -> None: ...


class HostPermissionPrompt:
    """Prompt answered by the host surface through ``resolve()``.

    ``request()`` waits for the host to report the user's choice. When
    ``answer_timeout`` elapses first the request counts as declined.
    """

    def __init__(self, answer_timeout: Optional[float] = None) -> None:
        self.answer_timeout = answer_timeout
        self._pending: Optional[asyncio.Future] = None

    @property
    def awaiting_answer(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def request(self) -> bool:
        if not self.awaiting_answer:
            self._pending = asyncio.get_running_loop().create_future()
        logger.info("Permission prompt requested from host")

        try:
            return await asyncio.wait_for(
                asyncio.shield(self._pending), timeout=self.answer_timeout
            )
        except asyncio.TimeoutError as e:
            raise PermissionDeniedError("Permission prompt was not answered") from e

    def resolve(self, granted: bool) -> bool:
        """Deliver the user's answer. Returns False if nothing was asked."""
        if not self.awaiting_answer:
            logger.warning("Permission result received with no prompt pending")
            return False
        self._pending.set_result(granted)
        logger.info("Permission prompt answered: granted=%s", granted)
        return True


class HostNotificationRegistrar:
    """Flags that the host should register for remote notifications."""

    def __init__(self) -> None:
        self.registration_requested = False

    async def register(self) -> None:
        self.registration_requested = True
        logger.info("Remote notification registration requested")
