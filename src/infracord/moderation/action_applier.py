"""
Discord-side effects of each infraction kind and their inverses.

The applier is a table from InfractionType to a pair of coroutine functions,
``(apply, revert)``. A missing half means the kind has no effect in that
direction: kicks cannot be reverted, warnings and notes never touch Discord.

Policy
------
- Role effects on an account that is not in the guild succeed as
  ABSENT_TARGET; the sync engine re-applies them if the account rejoins.
- Bans and kicks always call Discord, since bans work by ID regardless of
  membership.
- Every handler is idempotent: granting a held role, removing a missing role or
  lifting a ban that is not there is reported as NO_OP, not as an error.
- Discord failures come back as a FAILED result. Nothing is retried here; the
  caller decides whether to try again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional

from infracord.datatypes.infraction_datatypes import ActionOutcome, ActionResult, InfractionType
from infracord.errors import AbsentTargetError, RemotePlatformError
from infracord.remote.remote_client import RemotePlatform
from infracord.util.logger import get_logger

logger = get_logger("action_applier")

Handler = Callable[["ActionApplier", InfractionType, int, str], Awaitable[ActionResult]]


@dataclass(frozen=True, slots=True)
class ActionPair:
    """The effect of a kind (``apply``) and its inverse (``revert``)."""

    apply: Optional[Handler] = None
    revert: Optional[Handler] = None


# ------------------------------------------------------------------
# Handlers
# ------------------------------------------------------------------

async def _ban(applier: "ActionApplier", kind: InfractionType, target_id: int, reason: str) -> ActionResult:
    await applier.platform.ban(target_id, reason)
    return ActionResult(kind, target_id, ActionOutcome.APPLIED)


async def _unban(applier: "ActionApplier", kind: InfractionType, target_id: int, reason: str) -> ActionResult:
    lifted = await applier.platform.unban(target_id, reason)
    if not lifted:
        return ActionResult(kind, target_id, ActionOutcome.NO_OP, "user was not banned")
    return ActionResult(kind, target_id, ActionOutcome.REVERTED)


async def _kick(applier: "ActionApplier", kind: InfractionType, target_id: int, reason: str) -> ActionResult:
    await applier.platform.kick(target_id, reason)
    return ActionResult(kind, target_id, ActionOutcome.APPLIED)


async def _grant_role(applier: "ActionApplier", kind: InfractionType, target_id: int, reason: str) -> ActionResult:
    role_id = applier.role_for(kind)
    if role_id is None:
        return ActionResult(kind, target_id, ActionOutcome.FAILED, f"no role configured for '{kind.role_key}'")

    member = await applier.platform.get_member(target_id)
    if member is None:
        return ActionResult(kind, target_id, ActionOutcome.ABSENT_TARGET)

    if not await applier.platform.add_role(member, role_id, reason):
        return ActionResult(kind, target_id, ActionOutcome.NO_OP, "role already held")
    return ActionResult(kind, target_id, ActionOutcome.APPLIED)


async def _remove_role(applier: "ActionApplier", kind: InfractionType, target_id: int, reason: str) -> ActionResult:
    role_id = applier.role_for(kind)
    if role_id is None:
        return ActionResult(kind, target_id, ActionOutcome.FAILED, f"no role configured for '{kind.role_key}'")

    member = await applier.platform.get_member(target_id)
    if member is None:
        return ActionResult(kind, target_id, ActionOutcome.ABSENT_TARGET)

    if not await applier.platform.remove_role(member, role_id, reason):
        return ActionResult(kind, target_id, ActionOutcome.NO_OP, "role not held")
    return ActionResult(kind, target_id, ActionOutcome.REVERTED)


_ROLE_PAIR = ActionPair(apply=_grant_role, revert=_remove_role)

DISPATCH: Dict[InfractionType, ActionPair] = {
    InfractionType.BAN: ActionPair(apply=_ban, revert=_unban),
    InfractionType.KICK: ActionPair(apply=_kick),
    InfractionType.MUTE: _ROLE_PAIR,
    InfractionType.META_MUTE: _ROLE_PAIR,
    InfractionType.REACTION_MUTE: _ROLE_PAIR,
    InfractionType.REQUESTS_MUTE: _ROLE_PAIR,
    InfractionType.SUPPORT_MUTE: _ROLE_PAIR,
    InfractionType.WARN: ActionPair(),
    InfractionType.NOTE: ActionPair(),
}


class ActionApplier:
    """Applies and reverts infraction effects on the remote guild.

    Args:
        platform: The remote guild.
        role_ids: Role key to role ID mapping (``{"muted": 123, ...}``).
    """

    def __init__(self, platform: RemotePlatform, role_ids: Mapping[str, int]) -> None:
        self.platform = platform
        self.role_ids = dict(role_ids)

    def role_for(self, kind: InfractionType) -> Optional[int]:
        """Return the role ID granted by ``kind``, or None."""
        key = kind.role_key
        return self.role_ids.get(key) if key else None

    async def apply(self, kind: InfractionType, target_id: int, reason: str) -> ActionResult:
        """Put the effect of ``kind`` in place for ``target_id``."""
        return await self._run("apply", DISPATCH[kind].apply, kind, target_id, reason)

    async def revert(self, kind: InfractionType, target_id: int, reason: str) -> ActionResult:
        """Undo the effect of ``kind`` for ``target_id``."""
        return await self._run("revert", DISPATCH[kind].revert, kind, target_id, reason)

    async def _run(
        self,
        direction: str,
        handler: Optional[Handler],
        kind: InfractionType,
        target_id: int,
        reason: str,
    ) -> ActionResult:
        if handler is None:
            return ActionResult(kind, target_id, ActionOutcome.NO_OP, f"{kind.value} has no {direction} effect")

        try:
            result = await handler(self, kind, target_id, reason)
        except AbsentTargetError:
            result = ActionResult(kind, target_id, ActionOutcome.ABSENT_TARGET)
        except RemotePlatformError as exc:
            logger.error("[APPLIER] Failed to %s %s for user %s: %s", direction, kind.value, target_id, exc)
            return ActionResult(kind, target_id, ActionOutcome.FAILED, str(exc))

        logger.debug("[APPLIER] %s %s for user %s -> %s %s",
                     direction, kind.value, target_id, result.outcome.value, result.detail)
        return result
