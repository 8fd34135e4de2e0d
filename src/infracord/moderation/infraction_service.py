"""
Creation, pardon and lookup of infractions.

InfractionService is what the slash commands call. It keeps the ordering every
pipeline relies on:

    create:  persist -> relay DM -> apply -> schedule expiry -> publish CREATED
    pardon:  deactivate -> cancel timer -> revert -> publish PARDONED -> relay DM

Persisting before applying means a crash between the two leaves a record whose
effect the next sync re-applies, never an effect without a record.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional

from infracord.database.infraction_store import InfractionStore
from infracord.datatypes.infraction_datatypes import ActionOutcome, ActionResult, Infraction, InfractionType, utcnow
from infracord.errors import InvalidDurationError, NotFoundError
from infracord.moderation.action_applier import ActionApplier
from infracord.moderation.audit import AuditEvent, AuditEventKind, AuditSink, NullAuditSink, publish_safely
from infracord.scheduler.expiry_scheduler import ExpiryScheduler
from infracord.util.logger import get_logger

logger = get_logger("infraction_service")

Notifier = Callable[..., Awaitable[Any]]

_UNITS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 60 * 60 * 24,
    "w": 60 * 60 * 24 * 7,
}
_DURATION_PART = re.compile(r"(\d+)\s*([smhdw])")
_PERMANENT = {"", "perm", "permanent", "forever", "never"}


def parse_duration(text: Optional[str]) -> Optional[timedelta]:
    """Parse a compact duration such as ``"10m"``, ``"1h30m"``, ``"2d"`` or ``"1w"``.

    Returns None for an empty value or ``"permanent"``.

    Raises:
        InvalidDurationError: For anything unparsable or a total of zero.
    """
    cleaned = (text or "").strip().lower()
    if cleaned in _PERMANENT:
        return None

    compact = cleaned.replace(" ", "")
    parts = _DURATION_PART.findall(compact)
    if not parts or "".join(amount + unit for amount, unit in parts) != compact:
        raise InvalidDurationError(f"Could not understand duration '{text}'. Use e.g. 10m, 1h30m, 2d, 1w.")

    seconds = sum(int(amount) * _UNITS[unit] for amount, unit in parts)
    if seconds <= 0:
        raise InvalidDurationError("Duration must be longer than zero.")
    return timedelta(seconds=seconds)


def format_duration(duration: Optional[timedelta]) -> str:
    """Inverse of parse_duration, for replies ("1h 30m", "permanent")."""
    if duration is None:
        return "permanent"

    remaining = int(duration.total_seconds())
    parts = []
    for unit in ("w", "d", "h", "m", "s"):
        amount, remaining = divmod(remaining, _UNITS[unit])
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts) or "0s"


@dataclass(slots=True)
class InfractionOutcome:
    """What create_infraction did: the stored record and the Discord result."""

    infraction: Infraction
    result: ActionResult

    @property
    def ok(self) -> bool:
        return self.result.ok


@dataclass(slots=True)
class PardonOutcome:
    """What pardon did.

    Attributes:
        pardoned: Records deactivated by this call. Empty when only a leftover
            effect without an active record was lifted.
        results: The revert result for each lifted effect, in order.
    """

    kind: InfractionType
    target_id: int
    pardoned: List[Infraction] = field(default_factory=list)
    results: List[ActionResult] = field(default_factory=list)

    @property
    def failures(self) -> List[ActionResult]:
        return [result for result in self.results if not result.ok]

    @property
    def ok(self) -> bool:
        return not self.failures


def _kind_label(kind: InfractionType) -> str:
    return kind.name.lower().replace("_", " ")


class InfractionService:
    """Pipelines for issuing and pardoning infractions.

    Args:
        store: Infraction persistence.
        applier: Applies and reverts Discord-side effects.
        scheduler: Expiry timers.
        sink: Audit event sink.
        notifier: Optional coroutine DMing the target of a relayed infraction.
            Called as ``notifier(infraction)`` on creation and
            ``notifier(infraction, pardoned=True)`` on pardon.
    """

    def __init__(
        self,
        store: InfractionStore,
        applier: ActionApplier,
        scheduler: ExpiryScheduler,
        sink: Optional[AuditSink] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.store = store
        self.applier = applier
        self.scheduler = scheduler
        self.sink = sink or NullAuditSink()
        self.notifier = notifier

    async def _notify(self, infraction: Infraction, **kwargs) -> None:
        if not infraction.kind.relay or self.notifier is None:
            return
        try:
            await self.notifier(infraction, **kwargs)
        except Exception as exc:
            logger.debug("[INFRACTION] Could not notify user %s: %s", infraction.target_id, exc)

    async def create_infraction(
        self,
        kind: InfractionType,
        target_id: int,
        actor_id: int,
        reason: str,
        duration: Optional[timedelta] = None,
    ) -> InfractionOutcome:
        """Record an infraction and put its effect in place.

        The target is told before the effect is applied; once banned or
        kicked, the bot may no longer share a server with them.

        Args:
            duration: How long the infraction lasts; None for permanent.

        Raises:
            InvalidDurationError: Zero or negative duration, or a duration for
                a kind that never expires. Nothing is persisted in that case.
            NotFoundError: The kind needs the target in the guild and they are not.
        """
        if duration is not None:
            if duration <= timedelta(0):
                raise InvalidDurationError("Duration must be longer than zero.")
            if not kind.expires:
                raise InvalidDurationError(f"{kind.name.title()} infractions cannot have a duration.")

        if kind.require_present and await self.applier.platform.get_member(target_id) is None:
            raise NotFoundError("The specified user is not present on the server.")

        expires_at = utcnow() + duration if duration is not None else None
        # A kick is finished the moment it happens; nothing stays in effect.
        active = kind is not InfractionType.KICK

        infraction = await self.store.create(target_id, actor_id, kind, reason, expires_at, active=active)
        await self._notify(infraction)
        result = await self.applier.apply(kind, target_id, f"Infraction {infraction.id}: {reason or 'no reason'}")

        if not result.ok:
            logger.warning("[INFRACTION] %s %s stored but not applied: %s",
                           kind.value, infraction.id, result.detail)

        if infraction.active and infraction.expires_at is not None:
            self.scheduler.schedule_reversal(infraction, infraction.expires_at)

        logger.info("[INFRACTION] %s issued %s %s to user %s (expires=%s, outcome=%s)",
                    actor_id, kind.value, infraction.id, target_id,
                    infraction.expires_at, result.outcome.value)

        await publish_safely(
            self.sink,
            AuditEvent(AuditEventKind.CREATED, infraction, actor_id=actor_id, detail=result.detail),
        )
        return InfractionOutcome(infraction, result)

    async def pardon(self, kind: InfractionType, target_id: int, actor_id: int) -> PardonOutcome:
        """Lift every active infraction of ``kind`` held by ``target_id``.

        Records are deactivated before their effect is reverted. A revert that
        fails is reported in the outcome; calling pardon again finds no active
        record and retries the revert on its own, since reverts are idempotent.

        Raises:
            NotFoundError: No active infraction of that kind and no leftover
                effect to lift.
        """
        matching = [i for i in await self.store.list_active_by_user(target_id) if i.kind is kind]
        if not matching:
            return await self._lift_leftover(kind, target_id, actor_id)

        outcome = PardonOutcome(kind, target_id)
        for infraction in matching:
            if not await self.store.set_active(infraction.id, False):
                # Expired between the lookup and now.
                continue
            self.scheduler.cancel(infraction.id)

            result = await self.applier.revert(kind, target_id, f"Infraction {infraction.id} pardoned")
            outcome.results.append(result)
            if not result.ok:
                logger.warning("[INFRACTION] Pardoned %s but reverting failed: %s", infraction.id, result.detail)

            record = replace(infraction, active=False)
            outcome.pardoned.append(record)
            logger.info("[INFRACTION] %s pardoned %s %s for user %s", actor_id, kind.value, infraction.id, target_id)
            await publish_safely(
                self.sink,
                AuditEvent(AuditEventKind.PARDONED, record, actor_id=actor_id, detail=result.detail),
            )
            await self._notify(record, pardoned=True)

        if not outcome.pardoned:
            raise NotFoundError(f"User {target_id} has no active {_kind_label(kind)}.")
        return outcome

    async def _lift_leftover(self, kind: InfractionType, target_id: int, actor_id: int) -> PardonOutcome:
        """Revert an effect whose record is already inactive, such as after a failed pardon."""
        missing = NotFoundError(f"User {target_id} has no active {_kind_label(kind)}.")
        if not kind.is_reversible:
            raise missing

        result = await self.applier.revert(kind, target_id, f"Leftover {kind.value} lifted by {actor_id}")
        if result.ok and result.outcome is not ActionOutcome.REVERTED:
            raise missing

        if result.ok:
            logger.info("[INFRACTION] %s lifted leftover %s for user %s", actor_id, kind.value, target_id)
            await publish_safely(
                self.sink,
                AuditEvent(AuditEventKind.PARDONED, actor_id=actor_id,
                           detail=f"Lifted leftover {_kind_label(kind)} of user {target_id}"),
            )
        else:
            logger.warning("[INFRACTION] Lifting leftover %s for user %s failed: %s",
                           kind.value, target_id, result.detail)
        return PardonOutcome(kind, target_id, results=[result])

    async def history(self, target_id: int) -> List[Infraction]:
        """Every infraction ever issued to ``target_id``, newest first."""
        return await self.store.list_by_user(target_id)
