"""Messages consumed by ``update()`` and commands it emits.

Both are closed sets of frozen dataclasses so transitions and effects can be
asserted on directly in tests.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from ..storage.base import LoadedData


# =============================================================================
# MESSAGES
# =============================================================================


@dataclass(frozen=True)
class Boot:
    pass


@dataclass(frozen=True)
class Timeout:
    pass


@dataclass(frozen=True)
class ConfigLoaded:
    config: LoadedData


@dataclass(frozen=True)
class TrackingArrived:
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class LinkingArrived:
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class NotificationOpened:
    """A push notification carried a resource to open."""

    url: str


@dataclass(frozen=True)
class NetworkConnected:
    pass


@dataclass(frozen=True)
class NetworkDisconnected:
    pass


@dataclass(frozen=True)
class ValidateRequested:
    pass


@dataclass(frozen=True)
class ValidateSucceeded:
    pass


@dataclass(frozen=True)
class ValidateFailed:
    pass


@dataclass(frozen=True)
class FetchTrackingRequested:
    pass


@dataclass(frozen=True)
class FetchTrackingSucceeded:
    data: Mapping[str, Any]


@dataclass(frozen=True)
class FetchTrackingFailed:
    pass


@dataclass(frozen=True)
class FetchResourceRequested:
    pass


@dataclass(frozen=True)
class FetchResourceSucceeded:
    resource: str


@dataclass(frozen=True)
class FetchResourceFailed:
    pass


@dataclass(frozen=True)
class AlertPermissionRequested:
    pass


@dataclass(frozen=True)
class AlertPermissionGranted:
    at: datetime


@dataclass(frozen=True)
class AlertPermissionDenied:
    at: datetime


@dataclass(frozen=True)
class AlertPromptDismissed:
    at: datetime


@dataclass(frozen=True)
class GoToMain:
    """The user skipped straight to the fallback surface."""


Msg = Union[
    Boot,
    Timeout,
    ConfigLoaded,
    TrackingArrived,
    LinkingArrived,
    NotificationOpened,
    NetworkConnected,
    NetworkDisconnected,
    ValidateRequested,
    ValidateSucceeded,
    ValidateFailed,
    FetchTrackingRequested,
    FetchTrackingSucceeded,
    FetchTrackingFailed,
    FetchResourceRequested,
    FetchResourceSucceeded,
    FetchResourceFailed,
    AlertPermissionRequested,
    AlertPermissionGranted,
    AlertPermissionDenied,
    AlertPromptDismissed,
    GoToMain,
]


# =============================================================================
# COMMANDS
# =============================================================================


@dataclass(frozen=True)
class NoCmd:
    pass


@dataclass(frozen=True)
class Batch:
    cmds: tuple["Cmd", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LoadConfig:
    pass


@dataclass(frozen=True)
class ScheduleTimeout:
    pass


@dataclass(frozen=True)
class MonitorNetwork:
    pass


@dataclass(frozen=True)
class SaveTracking:
    payload: Mapping[str, str]


@dataclass(frozen=True)
class SaveLinking:
    payload: Mapping[str, str]


@dataclass(frozen=True)
class SaveResource:
    url: str


@dataclass(frozen=True)
class SaveMode:
    mode: str


@dataclass(frozen=True)
class MarkFirstRunDone:
    pass


@dataclass(frozen=True)
class SaveAlerts:
    accepted: bool
    rejected: bool
    requested_at: Optional[datetime]


@dataclass(frozen=True)
class SavePendingResource:
    url: str


@dataclass(frozen=True)
class ClearPendingResource:
    pass


@dataclass(frozen=True)
class ValidateLiveness:
    pass


@dataclass(frozen=True)
class FetchTracking:
    device_id: str


@dataclass(frozen=True)
class FetchResource:
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class RequestPermission:
    pass


@dataclass(frozen=True)
class RegisterForNotifications:
    pass


@dataclass(frozen=True)
class LockRuntime:
    pass


Cmd = Union[
    NoCmd,
    Batch,
    LoadConfig,
    ScheduleTimeout,
    MonitorNetwork,
    SaveTracking,
    SaveLinking,
    SaveResource,
    SaveMode,
    MarkFirstRunDone,
    SaveAlerts,
    SavePendingResource,
    ClearPendingResource,
    ValidateLiveness,
    FetchTracking,
    FetchResource,
    RequestPermission,
    RegisterForNotifications,
    LockRuntime,
]


def batch(*cmds: "Cmd") -> "Cmd":
    """Combine commands, dropping NoCmd entries."""
    kept = tuple(cmd for cmd in cmds if not isinstance(cmd, NoCmd))
    if not kept:
        return NoCmd()
    if len(kept) == 1:
        return kept[0]
    return Batch(kept)


def flatten(cmd: "Cmd") -> list["Cmd"]:
    """Expand nested batches into a flat list of concrete commands."""
    if isinstance(cmd, NoCmd):
        return []
    if isinstance(cmd, Batch):
        result: list[Cmd] = []
        for child in cmd.cmds:
            result.extend(flatten(child))
        return result
    return [cmd]
