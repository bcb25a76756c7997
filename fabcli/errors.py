from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import Summary


class ErrorCode(str, Enum):
    # A retry of the request would not be successful.
    PERSISTENT = "PersistentError"
    # A retry of the request could be successful.
    TRANSIENT = "TransientError"
    # The proposal was accepted but no commit status arrived in time.
    TIMEOUT_ON_COMMIT = "TimeoutOnCommit"


RETRYABLE_CODES = {ErrorCode.TRANSIENT, ErrorCode.TIMEOUT_ON_COMMIT}


class InvokeError(Exception):
    """
    Error raised by a chaincode invocation attempt.

    The variant is carried in ``code`` rather than in a subclass so that retry
    eligibility is a single lookup on the tag.
    """

    def __init__(self, code: ErrorCode, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def persistent(cls, message: str, cause: Optional[BaseException] = None) -> "InvokeError":
        return cls(ErrorCode.PERSISTENT, message, cause)

    @classmethod
    def transient(cls, message: str, cause: Optional[BaseException] = None) -> "InvokeError":
        return cls(ErrorCode.TRANSIENT, message, cause)

    @classmethod
    def timeout_on_commit(cls, message: str, cause: Optional[BaseException] = None) -> "InvokeError":
        return cls(ErrorCode.TIMEOUT_ON_COMMIT, message, cause)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message}: {self.cause}"

    def __repr__(self) -> str:
        return f"InvokeError({self.code.value}, {str(self)!r})"


class PoolStoppedError(RuntimeError):
    pass


class InvocationAbortedError(RuntimeError):
    def __init__(self, message: str, summary: "Summary") -> None:
        super().__init__(message)
        self.summary = summary


class ConfigError(ValueError):
    pass
