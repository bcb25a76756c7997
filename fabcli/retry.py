from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import InvokeError


class RetryAction(str, Enum):
    RETRY = "RETRY"
    GIVE_UP = "GIVE_UP"


@dataclass(slots=True, frozen=True)
class RetryDecision:
    action: RetryAction
    delay_s: float = 0.0

    @property
    def should_retry(self) -> bool:
        return self.action is RetryAction.RETRY


GIVE_UP = RetryDecision(RetryAction.GIVE_UP)


@dataclass(slots=True, frozen=True)
class RetryOpts:
    max_attempts: int = 1
    resubmit_delay_s: float = 0.0

    def __post_init__(self) -> None:
        if int(self.max_attempts) < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if float(self.resubmit_delay_s) < 0:
            raise ValueError(f"resubmit_delay_s must be >= 0, got {self.resubmit_delay_s}")

    @classmethod
    def from_millis(cls, max_attempts: int, resubmit_delay_ms: float) -> "RetryOpts":
        return cls(max_attempts=int(max_attempts), resubmit_delay_s=float(resubmit_delay_ms) / 1000.0)


def decide(opts: RetryOpts, attempt: int, error: BaseException) -> RetryDecision:
    """
    Decide whether an attempt that failed with ``error`` should be resubmitted.

    The delay is the same for every retry of a run; there is no backoff.
    """
    if not isinstance(error, InvokeError) or not error.retryable:
        return GIVE_UP
    if attempt >= opts.max_attempts:
        return GIVE_UP
    return RetryDecision(RetryAction.RETRY, float(opts.resubmit_delay_s))
