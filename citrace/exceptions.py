"""Custom exception classes for the citrace application.

This module defines the error taxonomy used across the CLI. Context and
step-execution errors are surfaced to the caller as a non-zero exit code;
transport errors are recovered locally by the emitter and exporter.
"""


class CitraceError(Exception):
    """Base exception class for all citrace errors.

    All custom exceptions in the application should inherit from this class.
    This allows for catching all citrace-specific errors with a single except clause.
    """

    def __init__(self, message: str, suggestion: str = ""):
        """Initialize the exception.

        Args:
            message: The error message describing what went wrong
            suggestion: Optional suggestion for how to fix the problem
        """
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return a formatted error message with suggestion if available."""
        if self.suggestion:
            return f"{self.message}{'.' if not self.message.endswith('.') else ''} {self.suggestion}"
        return self.message


class ConfigurationError(CitraceError):
    """Raised when there's an error in the configuration.

    This includes invalid configuration values, missing required settings,
    or improperly formatted configuration files.
    """

    pass


class MissingContextError(CitraceError):
    """Raised when trace or span identifiers required by a command are absent."""

    def __init__(self, command: str, missing: list[str]):
        self.command = command
        self.missing = missing
        super().__init__(
            f"Missing {' and '.join(missing)} for '{command}'",
            "Pass them as options or run 'start' first so a hand-off file exists.",
        )


class ExportTransportError(CitraceError):
    """Raised when posting spans or log records to a backend fails."""

    def __init__(self, target: str, message: str, status_code: int | None = None):
        self.target = target
        self.status_code = status_code
        super().__init__(f"{target} export failed: {message}")


class StepExecutionError(CitraceError):
    """Raised when a wrapped CI command exits with a non-zero code."""

    def __init__(self, step: str, exit_code: int):
        self.step = step
        self.exit_code = exit_code
        super().__init__(f"Step '{step}' failed with exit code {exit_code}")


class HandoffError(CitraceError):
    """Raised when the hand-off file cannot be written."""

    pass
