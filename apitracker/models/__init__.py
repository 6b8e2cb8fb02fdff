"""Core data structures for apitracker."""

from apitracker.models.config import APITrackerConfig
from apitracker.models.resources import (
    APIResource,
    APIResourcesByGroupVersion,
    CRDEvent,
    CRDInfo,
    WatchEventType,
    group_version_key,
)

__all__ = [
    "APIResource",
    "APIResourcesByGroupVersion",
    "APITrackerConfig",
    "CRDEvent",
    "CRDInfo",
    "WatchEventType",
    "group_version_key",
]
