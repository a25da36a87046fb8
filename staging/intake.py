"""
ProposalIntake — feeds the assistant's event stream into the staging engine.

The assistant's tool-calling loop yields thinking / tool_start / tool_end /
message / done / error events. Only tool_end events can carry a proposed
change. Intake stages each proposal, keeps a transient "in-flight" list so
the UI can show proposals before the turn's summary message arrives, and
clears those entries once a message claims them.

Lorebook creates are approved on receipt by default: later entry proposals
in the same turn point at the new lorebook, so it has to exist first. This
is a policy flag (`auto_approve_lorebook_create`), not something the engine
depends on.

Cancelling (via the abort event) stops reading the stream. Records already
staged stay staged, and approvals already issued are not rolled back.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, List, Optional

from pydantic import BaseModel, ValidationError

from models.events import stream_event_adapter
from staging.engine import StagingEngine, parse_change, _is_lorebook_create
from staging.errors import ChangeValidationError, CommitError

logger = logging.getLogger("ProposalIntake")


class _Aborted(Exception):
    pass


@dataclass
class IntakeResult:
    """What one assistant turn did to the staging engine."""

    staged_ids: List[str] = field(default_factory=list)
    auto_approved_ids: List[str] = field(default_factory=list)
    dropped: int = 0  # malformed proposals / events
    failures: List[CommitError] = field(default_factory=list)
    error: Optional[str] = None
    cancelled: bool = False
    response: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures


class ProposalIntake:
    """Consumes one stream of assistant events per call to `consume()`.

    Usage:
        intake = ProposalIntake(engine)
        abort = asyncio.Event()
        result = await intake.consume(service.send_message_streaming(...), abort)
    """

    def __init__(self, engine: StagingEngine, auto_approve_lorebook_create: bool = True):
        self.engine = engine
        self.auto_approve_lorebook_create = auto_approve_lorebook_create
        self._in_flight: List[str] = []

    @property
    def in_flight_ids(self) -> List[str]:
        return list(self._in_flight)

    @property
    def in_flight(self) -> List[Any]:
        """Live versions of the proposals not yet claimed by a message."""
        live = (self.engine.get_live_change(cid) for cid in self._in_flight)
        return [change for change in live if change is not None]

    def reset(self) -> None:
        self._in_flight.clear()

    # ------------------------------------------------------------------
    # Stream loop
    # ------------------------------------------------------------------

    async def consume(
        self,
        events: AsyncIterable[Any],
        abort: Optional[asyncio.Event] = None,
    ) -> IntakeResult:
        """Read events until done, error, exhaustion or abort."""
        result = IntakeResult()
        iterator = events.__aiter__()
        try:
            while True:
                if abort is not None and abort.is_set():
                    raise _Aborted()
                try:
                    raw = await self._next_event(iterator, abort)
                except StopAsyncIteration:
                    break

                event = self._parse_event(raw)
                if event is None:
                    result.dropped += 1
                    continue

                if event.type == "tool_end":
                    await self._on_tool_end(event, result)
                elif event.type == "message":
                    self._claim(event.message.pending_change_ids)
                elif event.type == "done":
                    self._claim(event.pending_change_ids)
                    result.response = event.response
                    break
                elif event.type == "error":
                    result.error = event.error
                    logger.error(f"Assistant stream error: {event.error}")
                    break
        except _Aborted:
            result.cancelled = True
            logger.info(f"Intake aborted after staging {len(result.staged_ids)} proposals")
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return result

    async def _next_event(self, iterator: AsyncIterator[Any], abort: Optional[asyncio.Event]) -> Any:
        if abort is None:
            return await iterator.__anext__()

        next_task = asyncio.ensure_future(iterator.__anext__())
        abort_task = asyncio.ensure_future(abort.wait())
        try:
            done, _ = await asyncio.wait({next_task, abort_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            abort_task.cancel()
        if next_task in done:
            return next_task.result()

        # Abort won the race: stop the pending read before the stream is closed.
        next_task.cancel()
        try:
            await next_task
        except (asyncio.CancelledError, StopAsyncIteration):
            pass
        except Exception as e:
            logger.warning(f"Stream raised while being cancelled: {e}")
        raise _Aborted()

    def _parse_event(self, raw: Any):
        if isinstance(raw, BaseModel) and getattr(raw, "type", None):
            return raw
        try:
            return stream_event_adapter.validate_python(raw)
        except ValidationError as e:
            logger.warning(f"Skipping malformed stream event: {e}")
            return None

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _on_tool_end(self, event, result: IntakeResult) -> None:
        raw_change = event.tool_call.pending_change
        if raw_change is None:
            return
        try:
            change = parse_change(raw_change)
        except ChangeValidationError as e:
            result.dropped += 1
            logger.warning(f"Tool call {event.tool_call.name} proposed a malformed change: {e}")
            return
        if change.tool_call_id is None and event.tool_call.id:
            change = change.model_copy(update={"tool_call_id": event.tool_call.id})

        staged = self.engine.add(change)
        if staged is None:
            return
        # Includes deferred records.
        self._in_flight.append(staged.id)
        result.staged_ids.append(staged.id)

        if self.auto_approve_lorebook_create and _is_lorebook_create(staged):
            try:
                await self.engine.approve(staged.id)
            except CommitError as e:
                result.failures.append(e)
                logger.error(f"Auto-approval of lorebook \"{staged.display_name}\" failed: {e}")
            else:
                result.auto_approved_ids.append(staged.id)

    def _claim(self, change_ids: List[str]) -> None:
        """Drop in-flight entries now owned by a message."""
        if not change_ids:
            return
        claimed = set(change_ids)
        kept = []
        for cid in self._in_flight:
            live = self.engine.get_live_change(cid)
            if cid in claimed or (live is not None and live.id in claimed):
                continue
            kept.append(cid)
        self._in_flight = kept
