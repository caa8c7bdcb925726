from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class FailureCode(str, Enum):
    """Why an update was not carried through."""

    IGNORED = "ignored"  # not ours to handle, nothing sent
    FORBIDDEN = "forbidden"
    UNKNOWN_ACTION = "unknown_action"
    INVALID_INPUT = "invalid_input"
    WRONG_ANSWER = "wrong_answer"
    UNKNOWN_TOPIC = "unknown_topic"
    TOPIC_UNAVAILABLE = "topic_unavailable"
    RELAY_FAILED = "relay_failed"
    DELIVERY_FAILED = "delivery_failed"
    PIN_FAILED = "pin_failed"


# Failures caused by Telegram rather than by the update itself
TRANSPORT_FAILURES = {
    FailureCode.TOPIC_UNAVAILABLE,
    FailureCode.RELAY_FAILED,
    FailureCode.DELIVERY_FAILED,
    FailureCode.PIN_FAILED,
}


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[FailureCode] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: FailureCode) -> "Result[T]":
        return Result(ok=False, error=error, error_code=FailureCode(code))

    @property
    def transport_failed(self) -> bool:
        return not self.ok and self.error_code in TRANSPORT_FAILURES
