from .job import (
    COMPLETED,
    FAILED,
    JOB_STATUSES,
    LIVE_STATUSES,
    PENDING,
    PROCESSING,
    TERMINAL_STATUSES,
    NotificationJob,
)
from .machines import Machine, MachineDocument
from .telegram import TelegramChat


__all__ = [
    "NotificationJob",
    "PENDING",
    "PROCESSING",
    "COMPLETED",
    "FAILED",
    "JOB_STATUSES",
    "LIVE_STATUSES",
    "TERMINAL_STATUSES",
    "Machine",
    "MachineDocument",
    "TelegramChat",
]
