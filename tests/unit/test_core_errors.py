"""Tests for the error hierarchy."""

import pytest

from commandrunner.core.errors import (
    CommandRunnerError,
    ConfigurationError,
    InvalidTimeoutSpecError,
    ProcessError,
    ProcessStartupError,
    SubCommandNotAllowedError,
    UsageError,
)


class TestErrorHierarchy:
    """Test error classes and their relationships."""

    def test_base_error_carries_details(self) -> None:
        """Test the base error keeps its message and details."""
        error = CommandRunnerError("failed", details={"pid": 1})

        assert str(error) == "failed"
        assert error.message == "failed"
        assert error.details == {"pid": 1}

    def test_details_default_to_empty(self) -> None:
        """Test details default to an empty dict."""
        assert CommandRunnerError("failed").details == {}

    @pytest.mark.parametrize(
        "error_class,parent",
        [
            (ConfigurationError, CommandRunnerError),
            (UsageError, CommandRunnerError),
            (InvalidTimeoutSpecError, UsageError),
            (SubCommandNotAllowedError, UsageError),
            (ProcessError, CommandRunnerError),
            (ProcessStartupError, ProcessError),
        ],
    )
    def test_inheritance(self, error_class, parent) -> None:
        """Test each error sits under its parent."""
        assert issubclass(error_class, parent)

    def test_invalid_timeout_spec_keeps_value(self) -> None:
        """Test the offending value is kept."""
        error = InvalidTimeoutSpecError("bad timeout", value="soon")

        assert error.value == "soon"
        assert error.message == "bad timeout"

    def test_sub_command_not_allowed_keeps_allow_list(self) -> None:
        """Test the rejected sub-command and allow-list are kept."""
        error = SubCommandNotAllowedError(
            "not allowed", sub_command="push", allowed=["pull", "fetch"]
        )

        assert error.sub_command == "push"
        assert error.allowed == ("pull", "fetch")
