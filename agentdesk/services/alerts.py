"""
Operation boundary that turns application errors into user-facing alerts.

Nothing below this boundary shows anything to the user; nothing above it
sees an ``AgentDeskError``.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..domain.exceptions import (
    AgentDeskError,
    AuthMissing,
    OverlapError,
    PayloadError,
    PersistenceError,
    RequestInFlightError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

LEVEL_ERROR = "error"
LEVEL_INFO = "info"
LEVEL_REDIRECT = "redirect"

LOGIN_PATH = "/login"


@dataclass(frozen=True)
class Alert:
    level: str
    message: str


Notify = Callable[[Alert], None]


def alert_for(exc: AgentDeskError, action: str) -> Alert:
    """Map an application error to the alert the user should see."""
    if isinstance(exc, OverlapError):
        return Alert(LEVEL_ERROR, str(exc))
    if isinstance(exc, AuthMissing):
        return Alert(LEVEL_REDIRECT, LOGIN_PATH)
    if isinstance(exc, RequestInFlightError):
        return Alert(LEVEL_INFO, str(exc))
    if isinstance(exc, PayloadError):
        return Alert(LEVEL_ERROR, str(exc))
    if isinstance(exc, PersistenceError):
        return Alert(LEVEL_ERROR, f"Failed to {action}. Please try again.")
    return Alert(LEVEL_ERROR, str(exc) or f"Failed to {action}.")


class AlertBoundary:
    """
    Runs operations and reports their failures through ``notify``.

    Failed operations return None. Errors are never retried.
    """

    def __init__(self, notify: Notify) -> None:
        self._notify = notify

    async def run(self, action: str, operation: Awaitable[T]) -> Optional[T]:
        try:
            return await operation
        except AuthMissing:
            logger.info("Aborted '%s': no authenticated agent", action)
            self._notify(Alert(LEVEL_REDIRECT, LOGIN_PATH))
        except AgentDeskError as exc:
            logger.warning("Operation '%s' failed: %s", action, exc)
            self._notify(alert_for(exc, action))
        return None
