"""Unit tests for AttributionMerger exactly-once semantics."""
import asyncio

import pytest
from unittest.mock import AsyncMock

from src.gate_core.attribution.merger import AttributionMerger
from src.gate_core.storage.base import StateKeys
from src.gate_core.storage.memory_store import MemoryPersistence


WINDOW = 0.05


class Recorder:
    """Collects payloads delivered to the merger callbacks."""

    def __init__(self):
        self.tracking = []
        self.linking = []


def _merger(store=None, window=WINDOW):
    recorder = Recorder()
    merger = AttributionMerger(
        on_tracking=recorder.tracking.append,
        on_linking=recorder.linking.append,
        flag_store=store or MemoryPersistence(),
        merge_window=window,
    )
    return merger, recorder


@pytest.mark.asyncio
async def test_tracking_alone_emits_after_window():
    """Without deep-link data the conversion payload is emitted on expiry."""
    merger, recorder = _merger()

    merger.receive_tracking({"af_status": "Organic"})
    assert recorder.tracking == []

    await asyncio.sleep(WINDOW * 3)

    assert recorder.tracking == [{"af_status": "Organic"}]
    assert merger.emitted is True
    assert merger.merged is False


@pytest.mark.asyncio
async def test_linking_then_tracking_merges_immediately():
    """Deep-link first: conversion arrival merges without waiting."""
    merger, recorder = _merger()

    merger.receive_linking({"campaign": "c1"})
    merger.receive_tracking({"af_status": "Non-organic"})

    assert recorder.linking == [{"campaign": "c1"}]
    assert recorder.tracking == [{"af_status": "Non-organic", "deep_campaign": "c1"}]

    await asyncio.sleep(WINDOW * 3)
    assert len(recorder.tracking) == 1


@pytest.mark.asyncio
async def test_tracking_then_linking_within_window_merges_once():
    """Deep-link inside the window merges and cancels the timer."""
    merger, recorder = _merger()

    merger.receive_tracking({"af_status": "Non-organic"})
    merger.receive_linking({"campaign": "c1"})
    await asyncio.sleep(WINDOW * 3)

    assert recorder.tracking == [{"af_status": "Non-organic", "deep_campaign": "c1"}]


@pytest.mark.asyncio
async def test_existing_namespaced_key_is_not_overwritten():
    merger, recorder = _merger()

    merger.receive_linking({"campaign": "from-link"})
    merger.receive_tracking({"deep_campaign": "from-conversion"})

    assert recorder.tracking == [{"deep_campaign": "from-conversion"}]


@pytest.mark.asyncio
async def test_repeated_tracking_emits_once():
    """Later conversion callbacks never produce a second emission."""
    merger, recorder = _merger()

    merger.receive_tracking({"af_status": "Organic"})
    await asyncio.sleep(WINDOW * 3)
    merger.receive_tracking({"af_status": "Non-organic"})
    await asyncio.sleep(WINDOW * 3)

    assert recorder.tracking == [{"af_status": "Organic"}]


@pytest.mark.asyncio
async def test_merge_persists_flag_and_ignores_later_linking():
    """After a deep-link merge, further deep-link data is dropped."""
    store = MemoryPersistence()
    merger, recorder = _merger(store)

    merger.receive_linking({"campaign": "c1"})
    merger.receive_tracking({"af_status": "Non-organic"})
    await asyncio.sleep(0)

    assert merger.merged is True
    assert store.values[StateKeys.ATTRIBUTION_MERGED] == "1"

    merger.receive_linking({"campaign": "c2"})
    assert recorder.linking == [{"campaign": "c1"}]


@pytest.mark.asyncio
async def test_restored_flag_blocks_linking_on_next_launch():
    """A persisted merged flag survives restarts; conversion still emits."""
    store = MemoryPersistence({StateKeys.ATTRIBUTION_MERGED: "1"})
    merger, recorder = _merger(store)

    await merger.restore()
    merger.receive_linking({"campaign": "c1"})
    merger.receive_tracking({"af_status": "Non-organic"})
    await asyncio.sleep(WINDOW * 3)

    assert recorder.linking == []
    assert recorder.tracking == [{"af_status": "Non-organic"}]


@pytest.mark.asyncio
async def test_flag_store_failures_are_logged_not_raised():
    store = AsyncMock()
    store.is_attribution_merged.side_effect = RuntimeError("db down")
    store.mark_attribution_merged.side_effect = RuntimeError("db down")
    merger, recorder = _merger(store)

    await merger.restore()
    merger.receive_linking({"campaign": "c1"})
    merger.receive_tracking({"af_status": "Organic"})
    await asyncio.sleep(0)

    assert merger.merged is True
    assert len(recorder.tracking) == 1


@pytest.mark.asyncio
async def test_close_cancels_pending_window():
    merger, recorder = _merger()

    merger.receive_tracking({"af_status": "Organic"})
    merger.close()
    await asyncio.sleep(WINDOW * 3)

    assert recorder.tracking == []


@pytest.mark.asyncio
async def test_linking_after_tracking_only_emission_is_dropped():
    """Once the window emitted conversion data alone, deep-link callbacks are ignored."""
    store = MemoryPersistence()
    merger, recorder = _merger(store)

    merger.receive_tracking({"af_status": "Organic"})
    await asyncio.sleep(WINDOW * 3)
    for _ in range(3):
        merger.receive_linking({"campaign": "c1"})
    await asyncio.sleep(0)

    assert recorder.tracking == [{"af_status": "Organic"}]
    assert recorder.linking == []
    assert merger.accepts_linking is False
    assert merger.merged is False
    assert StateKeys.ATTRIBUTION_MERGED not in store.values
