"""
Snapshots of guild state as kept in the local mirror.

MirrorUser and MirrorRole are immutable so two snapshots can be compared as a
whole: a mirror row is stale when any tracked field differs, and a stale row is
always overwritten in full.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

import discord


def _avatar_url(user: discord.abc.User) -> str:
    avatar = getattr(user, "display_avatar", None)
    return str(avatar.url) if avatar is not None else ""


@dataclass(frozen=True, slots=True)
class MirrorRole:
    """A guild role as stored in the ``roles`` table."""

    id: int
    name: str
    colour: int = 0
    position: int = 0

    @classmethod
    def from_role(cls, role: discord.Role) -> "MirrorRole":
        return cls(id=role.id, name=role.name, colour=role.colour.value, position=role.position)


@dataclass(frozen=True, slots=True)
class MirrorUser:
    """A guild account as stored in the ``users`` table plus its role set.

    Attributes:
        id: Discord user ID.
        username: Account name.
        discriminator: Legacy tag, "0" for migrated accounts.
        avatar_url: URL of the displayed avatar.
        present: Whether the account is currently a guild member.
        role_ids: Complete set of role IDs held in the guild.
    """

    id: int
    username: str
    discriminator: str = "0"
    avatar_url: str = ""
    present: bool = True
    role_ids: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def from_member(cls, member: discord.Member, present: bool = True) -> "MirrorUser":
        return cls(
            id=member.id,
            username=member.name,
            discriminator=str(member.discriminator),
            avatar_url=_avatar_url(member),
            present=present,
            role_ids=frozenset(role.id for role in member.roles),
        )

    @classmethod
    def from_user(cls, user: discord.abc.User, present: bool, role_ids: Iterable[int] = ()) -> "MirrorUser":
        """Snapshot of a bare account; roles are carried over from the caller."""
        return cls(
            id=user.id,
            username=user.name,
            discriminator=str(user.discriminator),
            avatar_url=_avatar_url(user),
            present=present,
            role_ids=frozenset(role_ids),
        )


@dataclass(slots=True)
class SyncStats:
    """Counters reported after a full sync."""

    roles_updated: int = 0
    roles_removed: int = 0
    users_updated: int = 0
    users_absent: int = 0
    infractions_total: int = 0
    infractions_expired: int = 0

    @property
    def mirror_writes(self) -> int:
        """Number of mirror rows written or flagged during the pass."""
        return self.roles_updated + self.roles_removed + self.users_updated + self.users_absent
