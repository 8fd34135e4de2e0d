"""
Infraction types and records.

This module defines the InfractionType enum with the metadata each kind carries,
the Infraction dataclass stored by InfractionStore, and the ActionResult returned
when an effect is applied to or reverted on Discord.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class InfractionType(Enum):
    """Enumeration of supported infraction kinds.

    The value is what gets persisted in the ``kind`` column.
    """

    BAN = "ban"
    KICK = "kick"
    MUTE = "mute"
    META_MUTE = "meta_mute"
    REACTION_MUTE = "reaction_mute"
    REQUESTS_MUTE = "requests_mute"
    SUPPORT_MUTE = "support_mute"
    WARN = "warn"
    NOTE = "note"

    def __str__(self) -> str:
        return self.value

    @property
    def action_text(self) -> str:
        """Past-tense description used in messages ("banned", "meta-muted")."""
        return _ACTION_TEXT[self]

    @property
    def expires(self) -> bool:
        """Whether an infraction of this kind may carry an expiry."""
        return self not in _NON_EXPIRING

    @property
    def relay(self) -> bool:
        """Whether the target is told about the infraction in private."""
        return self is not InfractionType.NOTE

    @property
    def role_key(self) -> str | None:
        """Configuration key of the role granted by this kind, if it grants one."""
        return _ROLE_KEYS.get(self)

    @property
    def is_role_granting(self) -> bool:
        return self in _ROLE_KEYS

    @property
    def is_reversible(self) -> bool:
        """Whether expiry or pardon has a Discord-side effect to undo."""
        return self is InfractionType.BAN or self.is_role_granting

    @property
    def require_present(self) -> bool:
        """Whether the target must be a guild member for the infraction to be issued."""
        return self is InfractionType.KICK

    @property
    def reapplies_on_presence(self) -> bool:
        """Whether an active infraction of this kind is re-driven when its target is in the guild.

        A present member with an active ban was unbanned by hand; a member
        missing a granted role lost it on leaving or by hand.
        """
        return self.is_reversible


_ACTION_TEXT = {
    InfractionType.BAN: "banned",
    InfractionType.KICK: "kicked",
    InfractionType.MUTE: "muted",
    InfractionType.META_MUTE: "meta-muted",
    InfractionType.REACTION_MUTE: "reaction-muted",
    InfractionType.REQUESTS_MUTE: "requests-muted",
    InfractionType.SUPPORT_MUTE: "support-muted",
    InfractionType.WARN: "warned",
    InfractionType.NOTE: "noted",
}

_NON_EXPIRING = frozenset({InfractionType.KICK, InfractionType.WARN, InfractionType.NOTE})

_ROLE_KEYS = {
    InfractionType.MUTE: "muted",
    InfractionType.META_MUTE: "no_meta",
    InfractionType.REACTION_MUTE: "no_reactions",
    InfractionType.REQUESTS_MUTE: "no_requests",
    InfractionType.SUPPORT_MUTE: "no_support",
}


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Infraction:
    """A persisted moderation action.

    Attributes:
        id: Opaque unique identifier (UUID4 string).
        target_id: Discord ID of the account the infraction applies to.
        actor_id: Discord ID of the moderator who issued it.
        kind: The infraction type.
        reason: Free-text reason given by the moderator.
        created_at: When the record was created (aware, UTC).
        expires_at: When the infraction lapses; None means permanent.
        active: False once the infraction expired or was pardoned.
    """

    id: str
    target_id: int
    actor_id: int
    kind: InfractionType
    reason: str
    created_at: datetime
    expires_at: datetime | None = None
    active: bool = True

    def is_due(self, now: datetime | None = None) -> bool:
        """True when the infraction has an expiry that is now or in the past."""
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class ActionOutcome(Enum):
    """What happened when an effect was applied or reverted."""

    APPLIED = "applied"
    REVERTED = "reverted"
    NO_OP = "no_op"
    ABSENT_TARGET = "absent_target"
    FAILED = "failed"


@dataclass(slots=True)
class ActionResult:
    """Result of ActionApplier.apply / ActionApplier.revert.

    ABSENT_TARGET counts as success: the effect is logically in place and the
    sync engine restores it if the member comes back.
    """

    kind: InfractionType
    target_id: int
    outcome: ActionOutcome
    detail: str = field(default="")

    @property
    def ok(self) -> bool:
        return self.outcome is not ActionOutcome.FAILED
