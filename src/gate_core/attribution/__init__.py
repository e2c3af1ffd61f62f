"""Upstream attribution and notification event handling."""
from .merger import AttributionMerger
from .notifications import NotificationHandler, extract_resource_url

__all__ = [
    "AttributionMerger",
    "NotificationHandler",
    "extract_resource_url",
]
