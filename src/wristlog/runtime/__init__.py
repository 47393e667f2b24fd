"""Host runtime adapters (background execution lease)."""

from .lease import (
    ExecutionLease,
    InvalidationReason,
    LeaseEvent,
    LeaseInvalidated,
    LeaseWillExpire,
    TimedExecutionLease,
)

__all__ = [
    "ExecutionLease",
    "InvalidationReason",
    "LeaseEvent",
    "LeaseInvalidated",
    "LeaseWillExpire",
    "TimedExecutionLease",
]
