"""
Tests for the alert boundary.
"""

import asyncio

import pytest

from agentdesk.domain.exceptions import (
    AgentDeskError,
    AuthMissing,
    OverlapError,
    PayloadError,
    PersistenceError,
    RequestInFlightError,
)
from agentdesk.services.alerts import (
    LEVEL_ERROR,
    LEVEL_INFO,
    LEVEL_REDIRECT,
    LOGIN_PATH,
    Alert,
    AlertBoundary,
)


async def _raise(exc: Exception):
    raise exc


async def _value(value):
    return value


def _run(exc_or_value, action: str = "add schedule"):
    alerts = []
    boundary = AlertBoundary(alerts.append)
    if isinstance(exc_or_value, Exception):
        operation = _raise(exc_or_value)
    else:
        operation = _value(exc_or_value)
    result = asyncio.run(boundary.run(action, operation))
    return result, alerts


class TestAlertBoundary:
    def test_success_passes_value_through(self):
        result, alerts = _run(42)

        assert result == 42
        assert alerts == []

    def test_overlap_shows_message(self):
        result, alerts = _run(OverlapError("This time slot overlaps with existing schedules"))

        assert result is None
        assert alerts == [Alert(LEVEL_ERROR, "This time slot overlaps with existing schedules")]

    def test_persistence_failure_is_generic(self):
        _, alerts = _run(PersistenceError("connection reset"))

        assert alerts == [Alert(LEVEL_ERROR, "Failed to add schedule. Please try again.")]

    def test_auth_missing_redirects_to_login(self):
        _, alerts = _run(AuthMissing("no agent"))

        assert alerts == [Alert(LEVEL_REDIRECT, LOGIN_PATH)]

    def test_in_flight_is_informational(self):
        _, alerts = _run(RequestInFlightError("busy"))

        assert alerts[0].level == LEVEL_INFO

    def test_payload_error_shows_message(self):
        _, alerts = _run(PayloadError("This property has already been imported"), "import the listing")

        assert alerts == [Alert(LEVEL_ERROR, "This property has already been imported")]

    def test_unexpected_errors_propagate(self):
        alerts = []
        boundary = AlertBoundary(alerts.append)

        with pytest.raises(RuntimeError):
            asyncio.run(boundary.run("add schedule", _raise(RuntimeError("bug"))))

        assert alerts == []

    def test_plain_error_shows_its_message(self):
        _, alerts = _run(AgentDeskError("No availability slot sched-404 on your properties."), "update schedule")

        assert alerts == [Alert(LEVEL_ERROR, "No availability slot sched-404 on your properties.")]

    def test_plain_error_without_message_is_generic(self):
        _, alerts = _run(AgentDeskError(), "update schedule")

        assert alerts == [Alert(LEVEL_ERROR, "Failed to update schedule.")]
