"""Database models."""

from batcheval.models.submission import Submission
from batcheval.models.outcome import OutcomeRecord
from batcheval.models.audit import ProcessLog

__all__ = ["Submission", "OutcomeRecord", "ProcessLog"]
