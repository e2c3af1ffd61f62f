"""Effect execution: timers, network tasks, persistence and platform adapters."""
from .connectivity import ConnectivityWatcher
from .executor import Runtime, utc_now
from .permissions import (
    HostNotificationRegistrar,
    HostPermissionPrompt,
    NotificationRegistrar,
    PermissionPrompt,
)

__all__ = [
    "Runtime",
    "ConnectivityWatcher",
    "PermissionPrompt",
    "NotificationRegistrar",
    "HostPermissionPrompt",
    "HostNotificationRegistrar",
    "utc_now",
]
