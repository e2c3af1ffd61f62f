"""Assembly of the gate components into one startable service."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from redis.asyncio import Redis

from .attribution.merger import AttributionMerger
from .attribution.notifications import NotificationHandler
from .config import GateSettings
from .core.messages import LinkingArrived, NotificationOpened, TrackingArrived
from .core.program import Program
from .remote.client import RemoteServiceClient
from .runtime.connectivity import ConnectivityWatcher
from .runtime.executor import Runtime, utc_now
from .runtime.permissions import HostNotificationRegistrar, HostPermissionPrompt
from .schemas.remote import DeviceMetadata
from .storage.base import PersistenceGateway
from .storage.redis_store import RedisPersistence
from .storage.sqlite_store import SQLitePersistence


logger = logging.getLogger(__name__)

Closer = Callable[[], Awaitable[None]]


@dataclass
class GateService:
    """All gate components for one device/install, wired together."""

    program: Program
    runtime: Runtime
    merger: AttributionMerger
    notifications: NotificationHandler
    permission_prompt: HostPermissionPrompt
    registrar: HostNotificationRegistrar
    gateway: PersistenceGateway
    client: RemoteServiceClient
    closers: list[Closer] = field(default_factory=list)

    async def start(self) -> None:
        """Restore persisted side state and boot the program."""
        await self.merger.restore()
        try:
            loaded = await self.gateway.load_all()
            if loaded.push_token:
                self.client.set_push_token(loaded.push_token)
        except Exception as e:
            logger.warning("Failed to restore push token: %s", e)
        await self.program.start()

    async def stop(self) -> None:
        self.merger.close()
        await self.program.stop()
        for closer in self.closers:
            try:
                await closer()
            except Exception as e:
                logger.warning("Error while closing gate resource: %s", e)

    async def update_push_token(self, token: str) -> None:
        """Report a new push token with future decision requests."""
        self.client.set_push_token(token)
        try:
            await self.gateway.save_push_token(token)
        except Exception as e:
            logger.warning("Best-effort save failed for push_token: %s", e)

    def snapshot(self) -> dict[str, Any]:
        """Current stage and view flags for the host surface."""
        model = self.program.model
        view = self.program.view_state
        return {
            "stage": model.stage.value,
            "resource": model.resource,
            "frozen": model.frozen,
            "show_permission_prompt": view.show_permission_prompt,
            "show_offline_view": view.show_offline_view,
            "navigate_to_content": view.navigate_to_content,
            "navigate_to_fallback": view.navigate_to_fallback,
            "register_for_notifications": self.registrar.registration_requested,
        }


def assemble_service(
    gateway: PersistenceGateway,
    client: RemoteServiceClient,
    watcher: ConnectivityWatcher,
    device_id: str,
    boot_timeout: float = Runtime.BOOT_TIMEOUT_SECONDS,
    merge_window: float = AttributionMerger.MERGE_WINDOW_SECONDS,
    permission_prompt: Optional[HostPermissionPrompt] = None,
    clock: Callable[[], datetime] = utc_now,
) -> GateService:
    """Wire explicit collaborators into a service (no ambient globals)."""
    permission_prompt = permission_prompt or HostPermissionPrompt()
    registrar = HostNotificationRegistrar()

    runtime = Runtime(
        gateway=gateway,
        client=client,
        watcher=watcher,
        permission_prompt=permission_prompt,
        registrar=registrar,
        boot_timeout=boot_timeout,
        clock=clock,
    )
    program = Program(runtime, device_id=device_id, clock=clock)

    merger = AttributionMerger(
        on_tracking=lambda payload: program.send(TrackingArrived(payload)),
        on_linking=lambda payload: program.send(LinkingArrived(payload)),
        flag_store=gateway,
        merge_window=merge_window,
    )
    notifications = NotificationHandler(
        on_resource=lambda url: program.send(NotificationOpened(url))
    )

    return GateService(
        program=program,
        runtime=runtime,
        merger=merger,
        notifications=notifications,
        permission_prompt=permission_prompt,
        registrar=registrar,
        gateway=gateway,
        client=client,
    )


def build_service(
    settings: GateSettings, session: aiohttp.ClientSession
) -> GateService:
    """Build a service from settings using the injected HTTP session."""
    closers: list[Closer] = []

    if settings.redis_url:
        redis = Redis.from_url(settings.redis_url, decode_responses=False)
        redis_gateway = RedisPersistence(redis, prefix=settings.redis_prefix)
        closers.append(redis_gateway.close)
        gateway: PersistenceGateway = redis_gateway
    else:
        sqlite_gateway = SQLitePersistence(settings.db_path)

        async def close_sqlite() -> None:
            sqlite_gateway.close()

        closers.append(close_sqlite)
        gateway = sqlite_gateway

    device = DeviceMetadata(
        os=settings.platform,
        af_id=settings.device_id,
        bundle_id=settings.bundle_id,
        firebase_project_id=settings.project_id,
        store_id=f"id{settings.app_id}",
        locale=settings.locale,
    )
    client = RemoteServiceClient(
        session=session,
        liveness_url=settings.liveness_url,
        attribution_base_url=settings.attribution_base_url,
        app_id=settings.app_id,
        dev_key=settings.dev_key,
        decision_url=settings.decision_url,
        device=device,
        user_agent=settings.user_agent,
        attribution_delay=settings.attribution_delay,
    )
    watcher = ConnectivityWatcher(
        session=session,
        probe_url=settings.probe_url,
        interval=settings.probe_interval,
    )

    service = assemble_service(
        gateway=gateway,
        client=client,
        watcher=watcher,
        device_id=settings.device_id,
        boot_timeout=settings.boot_timeout,
        merge_window=settings.merge_window,
    )
    service.closers.extend(closers)
    return service
