"""
In-memory timers that lift temporary infractions when they lapse.

The scheduler keeps one asyncio task per infraction ID. A task sleeps until
the infraction's expiry, then fires: revert the Discord-side effect, mark the
record inactive, publish an EXPIRED audit event. The handle is dropped only
after firing finished.

Nothing here is persisted. After a restart ``recover_all`` rebuilds every
timer from the active expirable infractions in the store; timers whose expiry
already passed fire at once.

Firing is guarded by the stored ``active`` flag: a record that was pardoned, or
already expired by an earlier timer, is never reverted twice.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Callable, Dict, List, Optional

from infracord.database.infraction_store import InfractionStore
from infracord.datatypes.infraction_datatypes import Infraction, utcnow
from infracord.moderation.action_applier import ActionApplier
from infracord.moderation.audit import AuditEvent, AuditEventKind, AuditSink, NullAuditSink, publish_safely
from infracord.util.logger import get_logger

logger = get_logger("expiry_scheduler")


class ReversalState(Enum):
    SCHEDULED = "scheduled"
    FIRED = "fired"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class ScheduledReversal:
    """A pending expiry for one infraction."""

    infraction_id: str
    due_at: datetime
    task: Optional[asyncio.Task] = None
    state: ReversalState = ReversalState.SCHEDULED


class ExpiryScheduler:
    """Owns the expiry timers of every temporary infraction.

    Args:
        store: Source of truth for infraction records.
        applier: Used to revert the effect of an expired infraction.
        sink: Where EXPIRED events are published.
        clock: Returns the current aware UTC time; replaced in tests.
    """

    def __init__(
        self,
        store: InfractionStore,
        applier: ActionApplier,
        sink: Optional[AuditSink] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.applier = applier
        self.sink = sink or NullAuditSink()
        self.clock = clock
        self._reversals: Dict[str, ScheduledReversal] = {}
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._running = True
        logger.info("[EXPIRY] Scheduler started")

    async def shutdown(self) -> None:
        """Cancel every timer and wait for the tasks to finish. Safe to call twice."""
        self._running = False
        tasks = [r.task for r in self._reversals.values() if r.task is not None]
        for reversal in self._reversals.values():
            if reversal.task is not None:
                reversal.task.cancel()
        self._reversals.clear()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[EXPIRY] Scheduler stopped (%d timers cancelled)", len(tasks))

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def schedule_reversal(self, infraction: Infraction, due_at: Optional[datetime] = None) -> asyncio.Task:
        """Arrange for ``infraction`` to be reverted at ``due_at``.

        ``due_at`` defaults to the infraction's own expiry. A due time in the
        past fires immediately. An existing timer for the same ID is cancelled
        first, so there is never more than one.

        Raises:
            RuntimeError: If the scheduler is not running.
            ValueError: If no due time is known.
        """
        if not self._running:
            raise RuntimeError("ExpiryScheduler is not running")

        due_at = due_at or infraction.expires_at
        if due_at is None:
            raise ValueError(f"Infraction {infraction.id} has no expiry to schedule")

        self._discard(infraction.id)

        reversal = ScheduledReversal(infraction_id=infraction.id, due_at=due_at)
        task = asyncio.create_task(self._run(reversal, infraction), name=f"infracord-expiry-{infraction.id}")
        reversal.task = task
        task.add_done_callback(partial(self._task_done, reversal))
        self._reversals[infraction.id] = reversal

        logger.debug("[EXPIRY] Scheduled %s %s for user %s at %s",
                     infraction.kind.value, infraction.id, infraction.target_id, due_at.isoformat())
        return task

    def fire_now(self, infraction: Infraction) -> asyncio.Task:
        """Revert ``infraction`` as soon as the event loop allows."""
        return self.schedule_reversal(infraction, self.clock())

    def cancel(self, infraction_id: str) -> bool:
        """Remove the pending timer of ``infraction_id`` without firing it.

        Returns False when nothing is pending or the timer is already firing.
        """
        reversal = self._reversals.get(infraction_id)
        if reversal is None or reversal.state is not ReversalState.SCHEDULED:
            return False

        self._discard(infraction_id)
        logger.debug("[EXPIRY] Cancelled timer for %s", infraction_id)
        return True

    async def recover_all(self) -> int:
        """Rebuild timers for every active infraction with an expiry.

        Returns:
            Number of timers scheduled.
        """
        infractions = await self.store.list_active_expirable()
        for infraction in infractions:
            self.schedule_reversal(infraction)

        logger.info("[EXPIRY] Recovered %d expiry timers", len(infractions))
        return len(infractions)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __contains__(self, infraction_id: str) -> bool:
        return infraction_id in self._reversals

    def __len__(self) -> int:
        return len(self._reversals)

    def pending_ids(self) -> List[str]:
        return list(self._reversals)

    def state_of(self, infraction_id: str) -> Optional[ReversalState]:
        reversal = self._reversals.get(infraction_id)
        return reversal.state if reversal else None

    async def join(self) -> None:
        """Wait until every timer registered so far has finished."""
        while self._reversals:
            tasks = [r.task for r in self._reversals.values() if r.task is not None]
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _discard(self, infraction_id: str) -> None:
        reversal = self._reversals.pop(infraction_id, None)
        if reversal is None:
            return
        if reversal.state is ReversalState.SCHEDULED:
            reversal.state = ReversalState.CANCELLED
        if reversal.task is not None and not reversal.task.done():
            reversal.task.cancel()

    async def _run(self, reversal: ScheduledReversal, infraction: Infraction) -> None:
        delay = (reversal.due_at - self.clock()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        reversal.state = ReversalState.FIRED
        # Rescheduling or shutdown mid-fire must not split revert from deactivation.
        await asyncio.shield(self._fire(reversal, infraction))

    async def _fire(self, reversal: ScheduledReversal, infraction: Infraction) -> bool:
        current = await self.store.get(infraction.id)
        if current is None or not current.active:
            logger.debug("[EXPIRY] %s is no longer active; nothing to revert", infraction.id)
            reversal.state = ReversalState.COMPLETED
            return False

        result = await self.applier.revert(
            current.kind, current.target_id, f"Infraction {current.id} expired"
        )
        if not result.ok:
            logger.error("[EXPIRY] Failed to revert %s %s for user %s: %s; record stays active",
                         current.kind.value, current.id, current.target_id, result.detail)
            return False

        if not await self.store.set_active(current.id, False):
            logger.debug("[EXPIRY] %s was deactivated concurrently", current.id)
            reversal.state = ReversalState.COMPLETED
            return False

        reversal.state = ReversalState.COMPLETED
        logger.info("[EXPIRY] %s %s for user %s expired (%s)",
                    current.kind.value, current.id, current.target_id, result.outcome.value)
        await publish_safely(
            self.sink,
            AuditEvent(AuditEventKind.EXPIRED, replace(current, active=False), detail=result.detail),
        )
        return True

    def _task_done(self, reversal: ScheduledReversal, task: asyncio.Task) -> None:
        if self._reversals.get(reversal.infraction_id) is reversal:
            del self._reversals[reversal.infraction_id]

        with suppress(asyncio.CancelledError):
            exception = task.exception()
            if exception:
                logger.error("[EXPIRY] Timer for %s failed", reversal.infraction_id, exc_info=exception)
