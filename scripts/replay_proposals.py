"""
Proposal Replay Script
Feeds a recorded assistant turn (JSON lines of stream events) through the
pending change engine against a vault folder.

Usage:
    python scripts/replay_proposals.py turn.jsonl                 # stage only, print summary
    python scripts/replay_proposals.py turn.jsonl --approve-all   # also commit everything
    python scripts/replay_proposals.py turn.jsonl --changes-out changes.json
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, AsyncIterator, Optional

# ---------------------------------------------------------------------------
# Resolve paths relative to this script's location
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(os.path.dirname(os.path.abspath(__file__)))
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import config  # noqa: E402
from staging import ApprovalNotes, CommitAdapter, ProposalIntake, StagingEngine  # noqa: E402
from stores import open_vault  # noqa: E402

logger = logging.getLogger("ReplayProposals")


async def read_events(path: Path) -> AsyncIterator[Any]:
    """Yield one raw event dict per non-blank line of a JSON-lines file."""
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"{path.name}:{lineno}: skipping bad JSON ({e})")


async def replay(
    events_path: Path,
    vault_path: str,
    approve_all: bool = False,
    changes_in: Optional[Path] = None,
    changes_out: Optional[Path] = None,
    auto_approve_lorebook_create: bool = True,
) -> dict:
    """Run one recorded turn through intake (and optionally approve-all).

    Returns a summary dict suitable for printing.
    """
    stores = open_vault(vault_path)
    engine = StagingEngine(CommitAdapter(stores["characters"], stores["lorebooks"], stores["scenarios"]))
    notes = ApprovalNotes(engine)

    if changes_in is not None and changes_in.exists():
        with open(changes_in, "r", encoding="utf-8") as f:
            engine.load(json.load(f))

    intake = ProposalIntake(engine, auto_approve_lorebook_create=auto_approve_lorebook_create)
    result = await intake.consume(read_events(events_path))

    failures = []
    if approve_all:
        failures = await engine.approve_all()

    if changes_out is not None:
        with open(changes_out, "w", encoding="utf-8") as f:
            json.dump(engine.dump(), f, indent=2)

    return {
        "staged": len(result.staged_ids),
        "auto_approved": len(result.auto_approved_ids),
        "dropped": result.dropped,
        "stream_error": result.error,
        "pending": engine.pending_count,
        "pending_breakdown": engine.breakdown_summary(),
        "failures": [e.user_message for e in result.failures + failures],
        "notes": notes.drain(),
        "response": result.response,
    }


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replay a recorded assistant turn through the pending change engine.",
    )
    parser.add_argument("events", type=Path, help="JSON-lines file of stream events.")
    parser.add_argument(
        "--vault",
        default=config.VAULT_PATH,
        help="Vault folder (default: VAULT_PATH from the environment).",
    )
    parser.add_argument(
        "--approve-all",
        action="store_true",
        help="Commit every staged change after the turn.",
    )
    parser.add_argument("--changes-in", type=Path, help="Load a saved change list first.")
    parser.add_argument("--changes-out", type=Path, help="Save the change list afterwards.")
    parser.add_argument(
        "--review-lorebooks",
        action="store_true",
        help="Stage lorebook creates for review instead of auto-approving them.",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()
    config.configure_logging()

    if not args.events.is_file():
        print(f"\n  ERROR: Events file not found: {args.events}")
        sys.exit(1)

    auto_approve = config.AUTO_APPROVE_LOREBOOK_CREATE and not args.review_lorebooks
    summary = asyncio.run(replay(
        args.events,
        args.vault,
        approve_all=args.approve_all,
        changes_in=args.changes_in,
        changes_out=args.changes_out,
        auto_approve_lorebook_create=auto_approve,
    ))

    print()
    print("=" * 56)
    print("  REPLAY SUMMARY")
    print("=" * 56)
    print(f"  Staged:        {summary['staged']} ({summary['auto_approved']} auto-approved)")
    print(f"  Dropped:       {summary['dropped']}")
    print(f"  Still pending: {summary['pending']} {summary['pending_breakdown']}")
    if summary["stream_error"]:
        print(f"  Stream error:  {summary['stream_error']}")
    for message in summary["failures"]:
        print(f"  ! {message}")
    print()

    if summary["failures"] or summary["stream_error"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
