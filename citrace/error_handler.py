"""Error handling utilities for the citrace application.

This module provides centralized error handling functions to ensure
consistent, user-friendly error messages throughout the application.
"""

import sys
from typing import Optional

from citrace.exceptions import CitraceError, StepExecutionError
from citrace.log import logger


def exit_code_for(error: Exception) -> int:
    """Map an error to the process exit code the CI job should see."""
    if isinstance(error, StepExecutionError):
        return error.exit_code or 1
    return 1


def handle_error(error: Exception, exit_on_error: bool = False) -> Optional[int]:
    """Handle an error by logging it and optionally exiting.

    Args:
        error: The exception that was raised
        exit_on_error: If True, exit the program after logging the error

    Returns:
        The exit code matching the error when not exiting
    """

    if isinstance(error, CitraceError):
        logger.error(f"{error}")
    else:
        logger.error(f"Unexpected error: {error}")
        logger.debug("Stack trace:", exc_info=True)

    exit_code = exit_code_for(error)
    if exit_on_error:
        sys.exit(exit_code)
    return exit_code
