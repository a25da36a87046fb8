"""
Pending change engine — staging, commit and intake of AI-proposed vault edits.
"""

from staging.errors import (
    StagingError,
    ChangeValidationError,
    UnknownChangeError,
    CommitError,
    StaleTargetError,
)
from staging.engine import StagingEngine, parse_change
from staging.commit import CommitAdapter, merge_entries
from staging.intake import ProposalIntake, IntakeResult
from staging.notes import ApprovalNotes, format_note

__all__ = [
    "StagingError",
    "ChangeValidationError",
    "UnknownChangeError",
    "CommitError",
    "StaleTargetError",
    "StagingEngine",
    "parse_change",
    "CommitAdapter",
    "merge_entries",
    "ProposalIntake",
    "IntakeResult",
    "ApprovalNotes",
    "format_note",
]
