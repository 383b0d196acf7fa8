"""
Custom exception classes for the application.
Provides structured error handling across all modules.
"""

from typing import Any, Optional, Dict


class StarxMiningException(Exception):
    """Base exception class for StarX mining backend."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(StarxMiningException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", details)


class TimeUnavailableError(StarxMiningException):
    """Raised when the time authority cannot produce a trusted timestamp."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TIME_UNAVAILABLE", details)


class StoreError(StarxMiningException):
    """Base class for user store failures."""


class StoreUnavailableError(StoreError):
    """Raised when the user store cannot be read."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "STORE_UNAVAILABLE", details)


class WriteFailureError(StoreError):
    """Raised when a write to the user store fails."""

    def __init__(self, user_id: str, reason: str):
        super().__init__(
            f"Failed to write user {user_id}: {reason}",
            "WRITE_FAILURE",
            {"user_id": user_id, "reason": reason}
        )


class SchedulerError(StarxMiningException):
    """Raised when there's a scheduler error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SCHEDULER_ERROR", details)


class JobAlreadyRunningError(SchedulerError):
    """Raised when a mining job is triggered while another one is in progress."""

    def __init__(self):
        super().__init__("Mining job already in progress")
        self.code = "JOB_ALREADY_RUNNING"
