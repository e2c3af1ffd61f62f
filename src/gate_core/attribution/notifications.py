"""Resource capture from push notification payloads."""
import logging
from typing import Any, Callable, Mapping, Optional


logger = logging.getLogger(__name__)

# Nested locations checked in order after the top-level "url" key
_NESTED_PATHS = (
    ("data", "url"),
    ("aps", "data", "url"),
    ("custom", "url"),
)


def extract_resource_url(payload: Mapping[str, Any]) -> Optional[str]:
    """Find the resource URL carried by a notification payload.

    Checks ``url``, ``data.url``, ``aps.data.url`` and ``custom.url``.

    Args:
        payload: Notification user info

    Returns:
        First non-empty URL string found, or None
    """
    url = payload.get("url")
    if isinstance(url, str) and url:
        return url

    for path in _NESTED_PATHS:
        node: Any = payload
        for key in path:
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(key)
        if isinstance(node, str) and node:
            return node

    return None


class NotificationHandler:
    """Forwards resources found in notification payloads."""

    def __init__(self, on_resource: Callable[[str], None]) -> None:
        self.on_resource = on_resource

    def process(self, payload: Mapping[str, Any]) -> Optional[str]:
        url = extract_resource_url(payload)
        if url is None:
            logger.debug("Notification carried no resource")
            return None
        logger.info("Notification resource captured")
        self.on_resource(url)
        return url
