"""Gate state model and derived view state.

The model is immutable; ``update()`` returns a new instance for every
message. Nothing here performs I/O or reads the clock.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional


ORGANIC_KEY = "af_status"
ORGANIC_VALUE = "Organic"
LINKING_KEY_PREFIX = "deep_"
ACTIVE_MODE = "Active"

ALERT_REPROMPT_INTERVAL = timedelta(days=3)


class Stage(str, Enum):
    """Negotiation stage; exactly one holds at a time."""

    INITIAL = "initial"
    BOOTING = "booting"
    VALIDATING = "validating"
    VALIDATED = "validated"
    ACTIVE = "active"
    INACTIVE = "inactive"
    OFFLINE = "offline"


@dataclass(frozen=True)
class TrackingInfo:
    """Attribution payload; organic flag is derived, never stored."""

    payload: Mapping[str, str] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return bool(self.payload)

    @property
    def is_organic(self) -> bool:
        return self.payload.get(ORGANIC_KEY) == ORGANIC_VALUE


@dataclass(frozen=True)
class LinkingInfo:
    """Deep-link payload."""

    payload: Mapping[str, str] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return bool(self.payload)


@dataclass(frozen=True)
class AlertInfo:
    """Permission prompt history. accepted and rejected are exclusive."""

    accepted: bool = False
    rejected: bool = False
    requested_at: Optional[datetime] = None

    def can_request(self, now: datetime) -> bool:
        """Whether the permission prompt may be shown at ``now``."""
        if self.accepted or self.rejected:
            return False
        if self.requested_at is None:
            return True
        return _as_utc(now) - _as_utc(self.requested_at) >= ALERT_REPROMPT_INTERVAL


@dataclass(frozen=True)
class ConfigInfo:
    """Values persisted by previous runs."""

    saved_resource: Optional[str] = None
    mode: Optional[str] = None
    first_run: bool = True
    pending_resource: Optional[str] = None


@dataclass(frozen=True)
class Model:
    """Authoritative gate state, owned by the controller."""

    stage: Stage = Stage.INITIAL
    resource: Optional[str] = None
    frozen: bool = False
    tracking: TrackingInfo = field(default_factory=TrackingInfo)
    linking: LinkingInfo = field(default_factory=LinkingInfo)
    alerts: AlertInfo = field(default_factory=AlertInfo)
    config: ConfigInfo = field(default_factory=ConfigInfo)
    device_id: str = ""

    @property
    def is_active(self) -> bool:
        return self.stage is Stage.ACTIVE


@dataclass(frozen=True)
class ViewState:
    """UI flags derived from the model. Never stored or fed back."""

    show_permission_prompt: bool = False
    show_offline_view: bool = False
    navigate_to_content: bool = False
    navigate_to_fallback: bool = False

    @classmethod
    def from_model(cls, model: Model, now: datetime) -> "ViewState":
        if model.stage is Stage.ACTIVE:
            if model.alerts.can_request(now):
                return cls(show_permission_prompt=True)
            return cls(navigate_to_content=True)
        if model.stage is Stage.INACTIVE:
            return cls(navigate_to_fallback=True)
        if model.stage is Stage.OFFLINE:
            return cls(show_offline_view=True)
        return cls()


def stringify_payload(data: Mapping[Any, Any]) -> dict[str, str]:
    """Flatten an SDK payload to string keys and string values."""
    result: dict[str, str] = {}
    for key, value in data.items():
        if isinstance(value, bool):
            text = "true" if value else "false"
        elif value is None:
            text = ""
        elif isinstance(value, (dict, list)):
            text = json.dumps(value, separators=(",", ":"), default=str)
        else:
            text = str(value)
        result[str(key)] = text
    return result


def merge_linking(
    primary: Mapping[str, Any], linking: Mapping[str, Any]
) -> dict[str, Any]:
    """Add each linking entry under ``deep_<key>`` unless already present."""
    merged = dict(primary)
    for key, value in linking.items():
        namespaced = f"{LINKING_KEY_PREFIX}{key}"
        if namespaced not in merged:
            merged[namespaced] = value
    return merged


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
