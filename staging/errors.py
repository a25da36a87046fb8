"""
Staging Error Types — Structured exception hierarchy.

Lets callers tell a proposal that was never valid (dropped at staging time)
from a commit that failed (record stays pending, user can retry or edit)
from a commit whose target has gone away (record stays pending, user should
reject it).
"""

from typing import Optional


class StagingError(Exception):
    """Base class for all pending-change errors."""
    pass


class ChangeValidationError(StagingError):
    """A raw proposal does not match any change record shape. Never staged."""
    pass


class UnknownChangeError(StagingError):
    """An operation referenced a change id the engine has never seen."""

    def __init__(self, change_id: str):
        super().__init__(f"Unknown change {change_id!r}")
        self.change_id = change_id


class CommitError(StagingError):
    """Writing an approved change to its entity store failed. Retryable.

    The originating record is left pending with its payload intact.
    """

    def __init__(self, change_id: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.change_id = change_id
        self.cause = cause

    @property
    def user_message(self) -> str:
        """Text the presentation layer can show next to the diff card."""
        return f"Could not apply change: {self}"


class StaleTargetError(CommitError):
    """The entity an update/delete targets no longer exists. NOT retryable.

    The record stays pending so the author can see the assistant worked from
    stale context and reject it explicitly.
    """

    @property
    def user_message(self) -> str:
        return f"This change targets something that no longer exists: {self}"
