"""
Domain-specific exception hierarchy for the agent dashboard.
"""


class AgentDeskError(Exception):
    """Base class for all application-level errors."""


class OverlapError(AgentDeskError):
    """Raised when a proposed slot intersects an existing availability slot."""

    def __init__(self, message: str, conflicting_ids=None):
        super().__init__(message)
        self.conflicting_ids = list(conflicting_ids or [])


class PersistenceError(AgentDeskError):
    """Raised when a store query, insert, update or delete fails."""


class AuthMissing(AgentDeskError):
    """Raised when an operation needs an authenticated agent and there is none."""


class RequestInFlightError(AgentDeskError):
    """Raised when a slot confirmation is submitted while another is pending."""


class PayloadError(AgentDeskError):
    """Raised when an externally fetched payload fails validation."""
