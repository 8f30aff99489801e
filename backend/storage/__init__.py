from .audit import AuditLog
from .database import SQLiteStore
from .jobs import ScheduledJobStore
from .notifications import EmergencyAlertStore, NotificationStore

__all__ = [
    "AuditLog",
    "EmergencyAlertStore",
    "NotificationStore",
    "SQLiteStore",
    "ScheduledJobStore",
]
