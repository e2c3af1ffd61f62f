"""Unit tests for the effect runtime."""
import asyncio
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.gate_core.core.messages import (
    AlertPermissionDenied,
    AlertPermissionGranted,
    Batch,
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
    MonitorNetwork,
    NetworkConnected,
    NetworkDisconnected,
    NoCmd,
    RegisterForNotifications,
    RequestPermission,
    SaveAlerts,
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
from src.gate_core.remote.exceptions import (
    DecodeError,
    PermissionDeniedError,
    TransportError,
)
from src.gate_core.runtime.connectivity import ConnectivityWatcher
from src.gate_core.runtime.executor import Runtime
from src.gate_core.runtime.permissions import HostNotificationRegistrar
from src.gate_core.storage.base import LoadedData
from src.gate_core.storage.memory_store import MemoryPersistence


NOW = datetime(2025, 2, 1, tzinfo=timezone.utc)


@pytest.fixture
def mock_client():
    """Mock RemoteServiceClient with async operations."""
    client = MagicMock()
    client.validate_liveness = AsyncMock(return_value=True)
    client.fetch_attribution = AsyncMock(return_value={"af_status": "Organic"})
    client.fetch_decision = AsyncMock(return_value="https://content.example/a")
    return client


@pytest.fixture
def probe():
    return AsyncMock(return_value=True)


@pytest.fixture
def runtime(mock_client, probe):
    """Runtime wired to in-memory persistence and mocked adapters."""
    prompt = MagicMock()
    prompt.request = AsyncMock(return_value=True)
    rt = Runtime(
        gateway=MemoryPersistence(),
        client=mock_client,
        watcher=ConnectivityWatcher(probe=probe, interval=60),
        permission_prompt=prompt,
        registrar=HostNotificationRegistrar(),
        boot_timeout=0.05,
        clock=lambda: NOW,
    )
    rt.sent = []
    rt.send_msg = rt.sent.append
    return rt


async def _settle(runtime):
    """Wait for every spawned task to finish."""
    await asyncio.gather(*list(runtime._tasks), return_exceptions=True)


@pytest.mark.asyncio
async def test_load_config_emits_loaded_data(runtime):
    await runtime.gateway.save_resource("https://saved.example")

    runtime.execute(LoadConfig())
    await _settle(runtime)

    assert len(runtime.sent) == 1
    assert isinstance(runtime.sent[0], ConfigLoaded)
    assert runtime.sent[0].config.resource == "https://saved.example"


@pytest.mark.asyncio
async def test_load_config_failure_uses_defaults(runtime):
    runtime.gateway = AsyncMock()
    runtime.gateway.load_all.side_effect = RuntimeError("disk full")

    runtime.execute(LoadConfig())
    await _settle(runtime)

    assert runtime.sent == [ConfigLoaded(LoadedData())]


@pytest.mark.asyncio
async def test_timeout_fires_when_not_locked(runtime):
    runtime.execute(ScheduleTimeout())
    assert runtime.timeout_pending is True

    await asyncio.sleep(0.15)

    assert runtime.sent == [Timeout()]


@pytest.mark.asyncio
async def test_lock_cancels_pending_timeout(runtime):
    """Entering ACTIVE locks the runtime and cancels the boot timer."""
    runtime.execute(ScheduleTimeout())
    runtime.execute(LockRuntime())

    await asyncio.sleep(0.15)

    assert runtime.locked is True
    assert runtime.timeout_pending is False
    assert runtime.sent == []


@pytest.mark.asyncio
async def test_locked_runtime_ignores_timeout_and_validation(runtime, mock_client):
    runtime.execute(LockRuntime())
    runtime.execute(Batch((ScheduleTimeout(), ValidateLiveness())))

    await asyncio.sleep(0.15)

    assert runtime.sent == []
    mock_client.validate_liveness.assert_not_awaited()


@pytest.mark.asyncio
async def test_validate_success(runtime):
    runtime.execute(ValidateLiveness())
    await _settle(runtime)

    assert runtime.sent == [ValidateRequested(), ValidateSucceeded()]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "outcome",
    [False, TransportError("boom", status=500), DecodeError("bad"), RuntimeError("x")],
)
async def test_validate_failure_modes(runtime, mock_client, outcome):
    """A false answer or any error maps to ValidateFailed."""
    if isinstance(outcome, Exception):
        mock_client.validate_liveness.side_effect = outcome
    else:
        mock_client.validate_liveness.return_value = outcome

    runtime.execute(ValidateLiveness())
    await _settle(runtime)

    assert runtime.sent == [ValidateRequested(), ValidateFailed()]


@pytest.mark.asyncio
async def test_fetch_tracking_success_and_failure(runtime, mock_client):
    runtime.execute(FetchTracking("device-1"))
    await _settle(runtime)

    mock_client.fetch_attribution.assert_awaited_once_with("device-1")
    assert runtime.sent == [
        FetchTrackingRequested(),
        FetchTrackingSucceeded({"af_status": "Organic"}),
    ]

    runtime.sent.clear()
    mock_client.fetch_attribution.side_effect = TransportError("down")
    runtime.execute(FetchTracking("device-1"))
    await _settle(runtime)

    assert runtime.sent == [FetchTrackingRequested(), FetchTrackingFailed()]


@pytest.mark.asyncio
async def test_fetch_resource_success_and_failure(runtime, mock_client):
    runtime.execute(FetchResource({"af_status": "Non-organic"}))
    await _settle(runtime)

    mock_client.fetch_decision.assert_awaited_once_with({"af_status": "Non-organic"})
    assert runtime.sent == [
        FetchResourceRequested(),
        FetchResourceSucceeded("https://content.example/a"),
    ]

    runtime.sent.clear()
    mock_client.fetch_decision.side_effect = DecodeError("ok=false")
    runtime.execute(FetchResource({}))
    await _settle(runtime)

    assert runtime.sent == [FetchResourceRequested(), FetchResourceFailed()]


@pytest.mark.asyncio
async def test_saves_reach_gateway(runtime):
    runtime.execute(
        Batch(
            (
                SaveTracking({"af_status": "Organic"}),
                SaveResource("https://content.example/a"),
                SavePendingResource("https://push.example/x"),
                SaveAlerts(True, False, NOW),
            )
        )
    )
    await _settle(runtime)

    loaded = await runtime.gateway.load_all()
    assert loaded.tracking == {"af_status": "Organic"}
    assert loaded.resource == "https://content.example/a"
    assert loaded.pending_resource == "https://push.example/x"
    assert loaded.alerts.accepted is True
    assert runtime.sent == []


@pytest.mark.asyncio
async def test_save_failures_are_best_effort(runtime):
    """A failing save is logged; nothing is raised or emitted."""
    runtime.gateway = AsyncMock()
    runtime.gateway.save_resource.side_effect = RuntimeError("disk full")

    runtime.execute(SaveResource("https://content.example/a"))
    await _settle(runtime)

    runtime.gateway.save_resource.assert_awaited_once()
    assert runtime.sent == []


@pytest.mark.asyncio
async def test_request_permission_granted(runtime):
    runtime.execute(RequestPermission())
    await _settle(runtime)

    assert runtime.sent == [AlertPermissionGranted(at=NOW)]


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [False, PermissionDeniedError("no answer")])
async def test_request_permission_denied(runtime, outcome):
    if isinstance(outcome, Exception):
        runtime.permission_prompt.request.side_effect = outcome
    else:
        runtime.permission_prompt.request.return_value = outcome

    runtime.execute(RequestPermission())
    await _settle(runtime)

    assert runtime.sent == [AlertPermissionDenied(at=NOW)]


@pytest.mark.asyncio
async def test_register_for_notifications(runtime):
    runtime.execute(RegisterForNotifications())
    await _settle(runtime)

    assert runtime.registrar.registration_requested is True


@pytest.mark.asyncio
async def test_monitor_network_reports_status(runtime, probe):
    probe.return_value = False

    runtime.execute(MonitorNetwork())
    await asyncio.sleep(0.01)
    await runtime.shutdown()

    assert runtime.sent == [NetworkDisconnected()]


@pytest.mark.asyncio
async def test_connectivity_change_is_forwarded(runtime):
    runtime.watcher.report(True)
    runtime.watcher.report(True)
    runtime.watcher.report(False)

    assert runtime.sent == [NetworkConnected(), NetworkDisconnected()]


@pytest.mark.asyncio
async def test_shutdown_cancels_outstanding_tasks(runtime):
    runtime.execute(ScheduleTimeout())

    await runtime.shutdown()
    await asyncio.sleep(0.1)

    assert runtime.sent == []
    assert runtime._tasks == set()


def test_no_cmd_is_ignored(runtime):
    runtime.execute(NoCmd())

    assert runtime.sent == []


def test_unknown_command_raises(runtime):
    with pytest.raises(TypeError):
        runtime.execute(object())


@pytest.mark.asyncio
async def test_unconnected_runtime_drops_messages(runtime, mock_client):
    """Results produced before the controller connects are dropped."""
    runtime.send_msg = None

    runtime.execute(ValidateLiveness())
    await _settle(runtime)

    mock_client.validate_liveness.assert_awaited_once()
