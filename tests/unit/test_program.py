"""End-to-end tests for the controller loop with fake collaborators."""
import asyncio
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from src.gate_core.core.messages import (
    GoToMain,
    NetworkDisconnected,
    Timeout,
    ValidateSucceeded,
)
from src.gate_core.core.model import Stage
from src.gate_core.remote.exceptions import TransportError
from src.gate_core.runtime.connectivity import ConnectivityWatcher
from src.gate_core.service import assemble_service
from src.gate_core.storage.base import StateKeys
from src.gate_core.storage.memory_store import MemoryPersistence


NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.validate_liveness = AsyncMock(return_value=True)
    client.fetch_attribution = AsyncMock(
        return_value={"af_status": "Organic", "media_source": "organic"}
    )
    client.fetch_decision = AsyncMock(return_value="https://content.example/a")
    return client


def _service(client, store=None, boot_timeout=5.0):
    watcher = ConnectivityWatcher(probe=AsyncMock(return_value=True), interval=60)
    return assemble_service(
        gateway=store or MemoryPersistence(),
        client=client,
        watcher=watcher,
        device_id="device-1",
        boot_timeout=boot_timeout,
        merge_window=0.01,
        clock=lambda: NOW,
    )


async def _wait_for_stage(service, stage, timeout=2.0):
    """Poll until the program reaches ``stage``."""
    deadline = asyncio.get_running_loop().time() + timeout
    while service.program.model.stage is not stage:
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(
                f"stage={service.program.model.stage} never became {stage}"
            )
        await asyncio.sleep(0.01)
    await service.program.drain()


@pytest.mark.asyncio
async def test_non_organic_install_activates_decided_resource(mock_client):
    """Conversion data -> liveness -> decision -> ACTIVE, locked and persisted."""
    store = MemoryPersistence()
    service = _service(mock_client, store)
    await service.start()
    try:
        service.merger.receive_tracking({"af_status": "Non-organic", "campaign": "x"})
        await _wait_for_stage(service, Stage.ACTIVE)
        await asyncio.sleep(0.01)

        model = service.program.model
        assert model.resource == "https://content.example/a"
        assert model.frozen is True
        assert service.runtime.locked is True
        assert service.runtime.timeout_pending is False
        mock_client.fetch_attribution.assert_not_awaited()
        assert store.values[StateKeys.RESOURCE] == "https://content.example/a"
        assert store.values[StateKeys.FIRST_RUN_DONE] == "1"
        assert service.snapshot()["show_permission_prompt"] is True
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_organic_first_run_enriches_with_deep_link_data(mock_client):
    """Organic installs fetch attribution and fold in deep-link keys."""
    service = _service(mock_client)
    await service.start()
    try:
        service.merger.receive_linking({"campaign": "c1"})
        service.merger.receive_tracking({"af_status": "Organic"})
        await _wait_for_stage(service, Stage.ACTIVE)

        mock_client.fetch_attribution.assert_awaited_once_with("device-1")
        payload = mock_client.fetch_decision.await_args.args[0]
        assert payload["media_source"] == "organic"
        assert payload["deep_campaign"] == "c1"
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_decision_failure_falls_back_to_saved_resource(mock_client):
    mock_client.fetch_decision.side_effect = TransportError("down", status=500)
    store = MemoryPersistence(
        {
            StateKeys.RESOURCE: "https://saved.example",
            StateKeys.FIRST_RUN_DONE: "1",
        }
    )
    service = _service(mock_client, store)
    await service.start()
    try:
        service.merger.receive_tracking({"af_status": "Non-organic"})
        await _wait_for_stage(service, Stage.ACTIVE)

        assert service.program.model.resource == "https://saved.example"
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_boot_timeout_without_attribution_goes_inactive(mock_client):
    service = _service(mock_client, boot_timeout=0.05)
    await service.start()
    try:
        await _wait_for_stage(service, Stage.INACTIVE)

        assert service.snapshot()["navigate_to_fallback"] is True
        mock_client.validate_liveness.assert_not_awaited()
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_active_stage_survives_late_messages(mock_client):
    """Late timeouts, disconnects and fallback requests never leave ACTIVE."""
    service = _service(mock_client)
    await service.start()
    try:
        service.merger.receive_tracking({"af_status": "Non-organic"})
        await _wait_for_stage(service, Stage.ACTIVE)

        for msg in (Timeout(), NetworkDisconnected(), GoToMain(), ValidateSucceeded()):
            service.program.send(msg)
        await service.program.drain()

        assert service.program.model.stage is Stage.ACTIVE
        assert service.program.model.resource == "https://content.example/a"
        assert mock_client.validate_liveness.await_count == 1
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_notification_resource_opened_after_decision(mock_client):
    service = _service(mock_client)
    await service.start()
    try:
        service.merger.receive_tracking({"af_status": "Non-organic"})
        await _wait_for_stage(service, Stage.ACTIVE)

        assert service.notifications.process({"data": {"url": "https://push.example/x"}})
        await service.program.drain()

        assert service.program.model.resource == "https://push.example/x"
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_subscribers_receive_view_state(mock_client):
    seen = []
    service = _service(mock_client)
    service.program.subscribe(lambda model, view: seen.append(model.stage))
    service.program.subscribe(MagicMock(side_effect=RuntimeError("ui crashed")))

    await service.start()
    try:
        await service.program.drain()

        assert seen[0] is Stage.BOOTING
    finally:
        await service.stop()


@pytest.mark.asyncio
async def test_push_token_is_restored_and_updated(mock_client):
    store = MemoryPersistence({StateKeys.PUSH_TOKEN: "token-old"})
    service = _service(mock_client, store)
    await service.start()
    try:
        mock_client.set_push_token.assert_called_once_with("token-old")

        await service.update_push_token("token-new")

        mock_client.set_push_token.assert_called_with("token-new")
        assert store.values[StateKeys.PUSH_TOKEN] == "token-new"
    finally:
        await service.stop()
