"""Core session logic: data model, downsampling, and the session coordinator.

The coordinator itself lives in :mod:`wristlog.core.session`; it is not
re-exported here because it depends on the transport and runtime adapters,
which in turn import the data model from this package.
"""

from .downsample import downsample, materialize, reject_outliers
from .models import (
    Reading,
    ReadingSource,
    SessionFile,
    SessionPhase,
    SessionState,
    TransferRecord,
    TransferStatus,
)

__all__ = [
    "Reading",
    "ReadingSource",
    "SessionFile",
    "SessionPhase",
    "SessionState",
    "TransferRecord",
    "TransferStatus",
    "downsample",
    "materialize",
    "reject_outliers",
]
