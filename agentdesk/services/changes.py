"""
Change notifications pushed by the store.

Subscribers get told that a table changed, never what the new state is;
the expected reaction is a refetch of the affected list.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

SCHEDULES_TABLE = "property_schedules"
VISITS_TABLE = "property_visit"
POSTINGS_TABLE = "postings"
LISTING_IMAGES_TABLE = "listing_images"
SESSIONS_TABLE = "conversation_sessions"
MESSAGES_TABLE = "messages"

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str
    row: Dict[str, Any] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


class ChangeFeedProtocol(Protocol):
    """Protocol describing the push-based change subscription."""

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Callable[[], None]:
        """Register ``callback`` for changes on ``table``; return an unsubscribe callable."""
