"""
Custom exception classes and error handling utilities.
"""

from typing import Optional, Dict, Any
import traceback


class TenderMonitorError(Exception):
    """Base exception for all tender monitor errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CrawlerError(TenderMonitorError):
    """Exception raised during browser navigation or extraction."""
    pass


class CaptchaError(CrawlerError):
    """Exception raised when a CAPTCHA-gated form cannot be submitted."""
    pass


class DatabaseError(TenderMonitorError):
    """Exception raised during database operations."""
    pass


class ConfigurationError(TenderMonitorError):
    """Exception raised for configuration-related issues."""
    pass


class ValidationError(TenderMonitorError):
    """Exception raised for data validation failures."""
    pass


class SessionError(TenderMonitorError):
    """Exception raised for crawl session lifecycle problems."""
    pass


class SessionNotFoundError(SessionError):
    """Exception raised when a session id is not live in the registry."""
    pass


class TaskTimeoutError(TenderMonitorError):
    """Exception raised when a worker pool task exceeds its time budget."""
    pass


class TaskCancelledError(TenderMonitorError):
    """Exception raised when a work item is skipped because its run was cancelled."""
    pass


def handle_error(
    error: Exception,
    logger,
    context: Optional[Dict[str, Any]] = None,
    reraise: bool = True
) -> None:
    """
    Handle and log errors with context information.

    Args:
        error: The exception that occurred
        logger: Logger instance to use for logging
        context: Additional context information
        reraise: Whether to reraise the exception after logging
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "traceback": traceback.format_exc(),
        **(context or {})
    }

    if isinstance(error, TenderMonitorError):
        error_context.update(error.details)

    logger.error(f"Error occurred: {error_context['error_type']}: {error_context['error_message']}",
                 extra={"error_context": error_context})

    if reraise:
        raise error
