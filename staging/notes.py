"""
ApprovalNotes — tells the assistant what the author did with its proposals.

After each approval or rejection a short system note is queued; the caller
prepends the drained notes to the assistant's next turn so it does not keep
re-proposing something the author already turned down.
"""

import logging
from typing import Callable, List, Optional

logger = logging.getLogger("ApprovalNotes")


def format_note(change, approved: bool) -> str:
    verb = "approved" if approved else "rejected"
    return (
        f"[System: User {verb} the {change.action} operation for "
        f"{change.entity_type} \"{change.display_name}\"]"
    )


def is_note(text: str) -> bool:
    """True for a note produced by format_note (hidden from chat history)."""
    return text.startswith("[System:")


class ApprovalNotes:
    """Collects approval/rejection notes from a StagingEngine subscription."""

    def __init__(self, engine=None):
        self._notes: List[str] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        if engine is not None:
            self.attach(engine)

    def attach(self, engine) -> None:
        self.detach()
        self._unsubscribe = engine.subscribe(self._on_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_event(self, event: str, change) -> None:
        if event == "approved":
            self._notes.append(format_note(change, True))
        elif event == "rejected":
            self._notes.append(format_note(change, False))

    @property
    def count(self) -> int:
        return len(self._notes)

    def drain(self) -> List[str]:
        """Return and clear the queued notes."""
        notes, self._notes = self._notes, []
        if notes:
            logger.debug(f"Drained {len(notes)} approval notes")
        return notes
