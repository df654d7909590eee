"""
Services Module
Business logic layer for the DoseLedger application
"""

from services.monitoring import MonitoringService, monitoring_service
from services.legacy_mirror_sync import LegacyMirrorSync, legacy_mirror_sync
from services.cascade_delete import CascadeDeletePropagator, CascadeDeleteResult, cascade_delete_propagator
from services.event_store import EventStore, EventQuery, event_store
from services.notification_dispatch import (
    NotificationDispatchService,
    NotificationRequest,
    DeliveryResult,
    notification_dispatch,
)
from services.orphan_cleanup import OrphanCleanupTool, CleanupMode, CleanupReport, orphan_cleanup_tool


__all__ = [
    # Service classes
    "MonitoringService",
    "LegacyMirrorSync",
    "CascadeDeletePropagator",
    "CascadeDeleteResult",
    "EventStore",
    "EventQuery",
    "NotificationDispatchService",
    "NotificationRequest",
    "DeliveryResult",
    "OrphanCleanupTool",
    "CleanupMode",
    "CleanupReport",
    # Singleton instances
    "monitoring_service",
    "legacy_mirror_sync",
    "cascade_delete_propagator",
    "event_store",
    "notification_dispatch",
    "orphan_cleanup_tool",
]
