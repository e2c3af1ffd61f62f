"""Effect executor: runs commands emitted by ``update()``.

Every command is turned into at most one asynchronous task. Tasks report
back through a single ``send_msg`` callback, which the controller backs with
a queue, so the reducer sees their results one at a time.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from ..core.messages import (
    AlertPermissionDenied,
    AlertPermissionGranted,
    Batch,
    ClearPendingResource,
    Cmd,
    ConfigLoaded,
    FetchResource,
    FetchResourceFailed,
    FetchResourceRequested,
    FetchResourceSucceeded,
    FetchTracking,
    FetchTrackingFailed,
    FetchTrackingRequested,
    FetchTrackingSucceeded,
    LoadConfig,
    LockRuntime,
    MarkFirstRunDone,
    MonitorNetwork,
    Msg,
    NetworkConnected,
    NetworkDisconnected,
    NoCmd,
    RegisterForNotifications,
    RequestPermission,
    SaveAlerts,
    SaveLinking,
    SaveMode,
    SavePendingResource,
    SaveResource,
    SaveTracking,
    ScheduleTimeout,
    Timeout,
    ValidateFailed,
    ValidateLiveness,
    ValidateRequested,
    ValidateSucceeded,
)
from ..remote.client import RemoteServiceClient
from ..remote.exceptions import GateClientError, PermissionDeniedError
from ..storage.base import LoadedData, PersistenceGateway
from .connectivity import ConnectivityWatcher
from .permissions import NotificationRegistrar, PermissionPrompt


logger = logging.getLogger(__name__)

Send = Callable[[Msg], None]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Runtime:
    """Interprets commands against the gateway, client and platform adapters."""

    BOOT_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        gateway: PersistenceGateway,
        client: RemoteServiceClient,
        watcher: ConnectivityWatcher,
        permission_prompt: PermissionPrompt,
        registrar: NotificationRegistrar,
        boot_timeout: float = BOOT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the runtime.

        Args:
            gateway: Persistence gateway for all save/load commands
            client: Remote service client for network commands
            watcher: Connectivity watcher started by MonitorNetwork
            permission_prompt: Platform permission prompt adapter
            registrar: Remote notification registration adapter
            boot_timeout: Seconds before an undecided boot falls back
            clock: Timestamp source for permission results
        """
        self.gateway = gateway
        self.client = client
        self.watcher = watcher
        self.permission_prompt = permission_prompt
        self.registrar = registrar
        self.boot_timeout = boot_timeout
        self.clock = clock

        self.send_msg: Optional[Send] = None
        self.watcher.on_change = self._on_connectivity_change

        self._locked = False
        self._timeout_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

        self._handlers: dict[type, Callable[[Any], None]] = {
            LoadConfig: self._load_config,
            ScheduleTimeout: self._schedule_timeout,
            MonitorNetwork: self._monitor_network,
            SaveTracking: self._save_tracking,
            SaveLinking: self._save_linking,
            SaveResource: self._save_resource,
            SaveMode: self._save_mode,
            MarkFirstRunDone: self._mark_first_run_done,
            SaveAlerts: self._save_alerts,
            SavePendingResource: self._save_pending_resource,
            ClearPendingResource: self._clear_pending_resource,
            ValidateLiveness: self._validate_liveness,
            FetchTracking: self._fetch_tracking,
            FetchResource: self._fetch_resource,
            RequestPermission: self._request_permission,
            RegisterForNotifications: self._register_for_notifications,
            LockRuntime: self._lock,
        }

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def timeout_pending(self) -> bool:
        return self._timeout_task is not None and not self._timeout_task.done()

    def execute(self, cmd: Cmd) -> None:
        """Start the work described by ``cmd``. Never blocks."""
        if isinstance(cmd, NoCmd):
            return
        if isinstance(cmd, Batch):
            for child in cmd.cmds:
                self.execute(child)
            return

        handler = self._handlers.get(type(cmd))
        if handler is None:
            raise TypeError(f"Unknown command type: {type(cmd).__name__}")
        handler(cmd)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks and stop connectivity monitoring."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.watcher.stop()
        logger.info("Runtime shut down (%s tasks cancelled)", len(tasks))

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _emit(self, msg: Msg) -> None:
        if self.send_msg is None:
            logger.warning("Dropping %s: runtime not connected", type(msg).__name__)
            return
        self.send_msg(msg)

    def _spawn(self, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _persist(self, label: str, action: Callable[[], Awaitable[None]]) -> None:
        async def run() -> None:
            try:
                await action()
                logger.debug("Persisted %s", label)
            except Exception as e:
                logger.warning("Best-effort save failed for %s: %s", label, e)

        self._spawn(run())

    def _on_connectivity_change(self, connected: bool) -> None:
        self._emit(NetworkConnected() if connected else NetworkDisconnected())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _load_config(self, cmd: LoadConfig) -> None:
        async def run() -> None:
            try:
                loaded = await self.gateway.load_all()
            except Exception as e:
                logger.warning("Failed to load persisted config, using defaults: %s", e)
                loaded = LoadedData()
            self._emit(ConfigLoaded(loaded))

        self._spawn(run())

    def _schedule_timeout(self, cmd: ScheduleTimeout) -> None:
        if self._locked:
            logger.debug("Timeout not scheduled: runtime locked")
            return
        if self._timeout_task is not None:
            self._timeout_task.cancel()

        async def run() -> None:
            await asyncio.sleep(self.boot_timeout)
            if not self._locked:
                logger.warning("Boot timeout after %.1fs", self.boot_timeout)
                self._emit(Timeout())

        self._timeout_task = self._spawn(run())

    def _monitor_network(self, cmd: MonitorNetwork) -> None:
        self.watcher.start()

    def _lock(self, cmd: LockRuntime) -> None:
        self._locked = True
        if self._timeout_task is not None:
            self._timeout_task.cancel()
            self._timeout_task = None
        logger.info("Runtime locked: decision reached")

    # -------------------------------------------------------------------------
    # Persistence (fire-and-forget)
    # -------------------------------------------------------------------------

    def _save_tracking(self, cmd: SaveTracking) -> None:
        self._persist("tracking", lambda: self.gateway.save_tracking(dict(cmd.payload)))

    def _save_linking(self, cmd: SaveLinking) -> None:
        self._persist("linking", lambda: self.gateway.save_linking(dict(cmd.payload)))

    def _save_resource(self, cmd: SaveResource) -> None:
        self._persist("resource", lambda: self.gateway.save_resource(cmd.url))

    def _save_mode(self, cmd: SaveMode) -> None:
        self._persist("mode", lambda: self.gateway.save_mode(cmd.mode))

    def _mark_first_run_done(self, cmd: MarkFirstRunDone) -> None:
        self._persist("first_run", self.gateway.mark_first_run_done)

    def _save_alerts(self, cmd: SaveAlerts) -> None:
        self._persist(
            "alerts",
            lambda: self.gateway.save_alerts(cmd.accepted, cmd.rejected, cmd.requested_at),
        )

    def _save_pending_resource(self, cmd: SavePendingResource) -> None:
        self._persist("pending_resource", lambda: self.gateway.save_pending_resource(cmd.url))

    def _clear_pending_resource(self, cmd: ClearPendingResource) -> None:
        self._persist("pending_resource", lambda: self.gateway.save_pending_resource(None))

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    def _validate_liveness(self, cmd: ValidateLiveness) -> None:
        if self._locked:
            logger.debug("Liveness validation skipped: runtime locked")
            return

        async def run() -> None:
            self._emit(ValidateRequested())
            try:
                is_live = await self.client.validate_liveness()
            except GateClientError as e:
                logger.warning("Liveness validation failed: %s", e)
                is_live = False
            except Exception as e:
                logger.error("Unexpected liveness error: %s", e, exc_info=True)
                is_live = False
            self._emit(ValidateSucceeded() if is_live else ValidateFailed())

        self._spawn(run())

    def _fetch_tracking(self, cmd: FetchTracking) -> None:
        async def run() -> None:
            self._emit(FetchTrackingRequested())
            try:
                data = await self.client.fetch_attribution(cmd.device_id)
            except GateClientError as e:
                logger.warning("Attribution fetch failed: %s", e)
                self._emit(FetchTrackingFailed())
                return
            except Exception as e:
                logger.error("Unexpected attribution error: %s", e, exc_info=True)
                self._emit(FetchTrackingFailed())
                return
            self._emit(FetchTrackingSucceeded(data))

        self._spawn(run())

    def _fetch_resource(self, cmd: FetchResource) -> None:
        payload: Mapping[str, Any] = dict(cmd.payload)

        async def run() -> None:
            self._emit(FetchResourceRequested())
            try:
                resource = await self.client.fetch_decision(dict(payload))
            except GateClientError as e:
                logger.warning("Decision fetch failed: %s", e)
                self._emit(FetchResourceFailed())
                return
            except Exception as e:
                logger.error("Unexpected decision error: %s", e, exc_info=True)
                self._emit(FetchResourceFailed())
                return
            self._emit(FetchResourceSucceeded(resource))

        self._spawn(run())

    # -------------------------------------------------------------------------
    # Platform
    # -------------------------------------------------------------------------

    def _request_permission(self, cmd: RequestPermission) -> None:
        async def run() -> None:
            try:
                granted = await self.permission_prompt.request()
            except PermissionDeniedError as e:
                logger.info("Permission declined: %s", e)
                granted = False
            if granted:
                self._emit(AlertPermissionGranted(at=self.clock()))
            else:
                self._emit(AlertPermissionDenied(at=self.clock()))

        self._spawn(run())

    def _register_for_notifications(self, cmd: RegisterForNotifications) -> None:
        async def run() -> None:
            try:
                await self.registrar.register()
            except Exception as e:
                logger.warning("Notification registration failed: %s", e)

        self._spawn(run())
