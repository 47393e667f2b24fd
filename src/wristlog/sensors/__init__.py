"""Accelerometer recorder adapters."""

from .recorder import SampleJournalRecorder, SampleRecorder, parse_journal_line
from .synthetic import SyntheticRecorder

__all__ = [
    "SampleJournalRecorder",
    "SampleRecorder",
    "SyntheticRecorder",
    "parse_journal_line",
]
