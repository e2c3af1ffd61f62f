"""Unit tests for the gate model and derived view state."""
from datetime import datetime, timedelta, timezone

import pytest

from src.gate_core.core.model import (
    AlertInfo,
    Model,
    Stage,
    ViewState,
    merge_linking,
    stringify_payload,
)


NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "alerts,expected",
    [
        (AlertInfo(), True),
        (AlertInfo(accepted=True), False),
        (AlertInfo(rejected=True), False),
        (AlertInfo(requested_at=NOW - timedelta(days=3)), True),
        (AlertInfo(requested_at=NOW - timedelta(days=2, hours=23)), False),
        (AlertInfo(requested_at=datetime(2025, 1, 1)), True),
    ],
)
def test_can_request(alerts, expected):
    """Prompt allowed when never answered and not asked within three days."""
    assert alerts.can_request(NOW) is expected


@pytest.mark.parametrize(
    "stage,field",
    [
        (Stage.INACTIVE, "navigate_to_fallback"),
        (Stage.OFFLINE, "show_offline_view"),
    ],
)
def test_view_state_for_terminal_stages(stage, field):
    view = ViewState.from_model(Model(stage=stage), NOW)

    assert getattr(view, field) is True


def test_view_state_active_prompts_when_allowed():
    model = Model(stage=Stage.ACTIVE, resource="R", frozen=True)

    assert ViewState.from_model(model, NOW) == ViewState(show_permission_prompt=True)


def test_view_state_active_navigates_after_answer():
    model = Model(
        stage=Stage.ACTIVE, resource="R", frozen=True, alerts=AlertInfo(accepted=True)
    )

    assert ViewState.from_model(model, NOW) == ViewState(navigate_to_content=True)


@pytest.mark.parametrize(
    "stage", [Stage.INITIAL, Stage.BOOTING, Stage.VALIDATING, Stage.VALIDATED]
)
def test_view_state_empty_while_negotiating(stage):
    assert ViewState.from_model(Model(stage=stage), NOW) == ViewState()


def test_stringify_payload():
    result = stringify_payload(
        {
            "is_first_launch": True,
            "retargeting": False,
            "cost": 1.5,
            "clicks": 3,
            "missing": None,
            "nested": {"a": 1},
        }
    )

    assert result == {
        "is_first_launch": "true",
        "retargeting": "false",
        "cost": "1.5",
        "clicks": "3",
        "missing": "",
        "nested": '{"a":1}',
    }


def test_merge_linking_keeps_primary_values():
    merged = merge_linking({"deep_a": "primary", "b": "2"}, {"a": "link", "c": "3"})

    assert merged == {"deep_a": "primary", "b": "2", "deep_c": "3"}
