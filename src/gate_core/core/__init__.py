"""Gate state machine: model, messages, pure update and the controller."""
from .model import (
    AlertInfo,
    ConfigInfo,
    LinkingInfo,
    Model,
    Stage,
    TrackingInfo,
    ViewState,
)
from .update import should_run_organic_flow, update

__all__ = [
    "Model",
    "Stage",
    "TrackingInfo",
    "LinkingInfo",
    "AlertInfo",
    "ConfigInfo",
    "ViewState",
    "update",
    "should_run_organic_flow",
]
