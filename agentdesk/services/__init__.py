"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .alerts import Alert, AlertBoundary
from .chat import ChatInbox, ChatStoreProtocol
from .listings import ListingService, ListingStoreProtocol
from .scheduling import ScheduleStoreProtocol, SchedulingEngine

__all__ = [
    "Alert",
    "AlertBoundary",
    "ChatInbox",
    "ChatStoreProtocol",
    "ListingService",
    "ListingStoreProtocol",
    "ScheduleStoreProtocol",
    "SchedulingEngine",
]
