"""
Error taxonomy for the element event subsystem.

Every failure the core reports carries an ErrorCode, whether it travels as a
raised exception or as the ``code`` of a result value.
"""

import asyncio
from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Error codes shared by results and exceptions."""
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    STATE_ERROR = "state_error"
    OVERFLOW = "overflow"
    NOT_CONNECTED = "not_connected"
    DESTROYED = "destroyed"
    TIMEOUT = "timeout"
    INTEGRITY_ERROR = "integrity_error"
    DUPLICATE_ID = "duplicate_id"
    UNKNOWN_ERROR = "unknown_error"


class ElementEventsError(Exception):
    """Base exception for the package."""

    code: ErrorCode = ErrorCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: Optional[Any] = None,
                 code: Optional[ErrorCode] = None):
        if code is not None:
            self.code = code
        self.message = message
        self.details = details
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.code.value}: {self.message!r})"


class ValidationError(ElementEventsError):
    """Input failed validation."""
    code = ErrorCode.VALIDATION_ERROR


class NotFoundError(ElementEventsError):
    """Target element is not tracked or not registered."""
    code = ErrorCode.NOT_FOUND


class StateError(ElementEventsError):
    """Operation is illegal for the current lifecycle or connection state."""
    code = ErrorCode.STATE_ERROR


class QueueOverflowError(ElementEventsError):
    """Event queue is full."""
    code = ErrorCode.OVERFLOW


class NotConnectedError(ElementEventsError):
    """Transport operation attempted while not connected."""
    code = ErrorCode.NOT_CONNECTED


class DestroyedError(ElementEventsError):
    """Component has been destroyed."""
    code = ErrorCode.DESTROYED


class TransportTimeoutError(ElementEventsError):
    """Transport operation exceeded its deadline."""
    code = ErrorCode.TIMEOUT


class IntegrityError(ElementEventsError):
    """Data disagrees with what is already tracked."""
    code = ErrorCode.INTEGRITY_ERROR


class DuplicateIdError(ElementEventsError):
    """Element id is already tracked."""
    code = ErrorCode.DUPLICATE_ID


class UnknownError(ElementEventsError):
    """Fallback for unexpected failures."""
    code = ErrorCode.UNKNOWN_ERROR


def error_code_for(error: BaseException) -> ErrorCode:
    """Map any exception to an ErrorCode."""
    if isinstance(error, ElementEventsError):
        return error.code
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCode.TIMEOUT
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCode.VALIDATION_ERROR
    if isinstance(error, KeyError):
        return ErrorCode.NOT_FOUND
    return ErrorCode.UNKNOWN_ERROR
