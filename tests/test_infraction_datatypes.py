"""Tests for the infraction and mirror datatypes."""

from datetime import timedelta

import pytest

from conftest import FakeMember, FakeRole
from infracord.datatypes.infraction_datatypes import (
    ActionOutcome,
    ActionResult,
    Infraction,
    InfractionType,
    utcnow,
)
from infracord.datatypes.mirror_datatypes import MirrorRole, MirrorUser, SyncStats


def test_persisted_values_are_lower_case_names() -> None:
    for kind in InfractionType:
        assert kind.value == kind.name.lower()
        assert InfractionType(kind.value) is kind


@pytest.mark.parametrize(
    "kind, expires, relay, role_key",
    [
        (InfractionType.BAN, True, True, None),
        (InfractionType.KICK, False, True, None),
        (InfractionType.MUTE, True, True, "muted"),
        (InfractionType.META_MUTE, True, True, "no_meta"),
        (InfractionType.REACTION_MUTE, True, True, "no_reactions"),
        (InfractionType.REQUESTS_MUTE, True, True, "no_requests"),
        (InfractionType.SUPPORT_MUTE, True, True, "no_support"),
        (InfractionType.WARN, False, True, None),
        (InfractionType.NOTE, False, False, None),
    ],
)
def test_kind_metadata(kind, expires, relay, role_key) -> None:
    assert kind.expires is expires
    assert kind.relay is relay
    assert kind.role_key == role_key
    assert kind.is_role_granting is (role_key is not None)


def test_reversible_kinds() -> None:
    reversible = {kind for kind in InfractionType if kind.is_reversible}
    assert InfractionType.BAN in reversible
    assert InfractionType.KICK not in reversible
    assert InfractionType.WARN not in reversible
    assert InfractionType.MUTE in reversible


def test_presence_rules() -> None:
    assert [kind for kind in InfractionType if kind.require_present] == [InfractionType.KICK]

    reapplied = {kind for kind in InfractionType if kind.reapplies_on_presence}
    assert InfractionType.BAN in reapplied
    assert InfractionType.SUPPORT_MUTE in reapplied
    assert InfractionType.KICK not in reapplied
    assert InfractionType.NOTE not in reapplied


def test_is_due() -> None:
    now = utcnow()
    permanent = Infraction("a", 1, 2, InfractionType.BAN, "", now)
    lapsed = Infraction("b", 1, 2, InfractionType.MUTE, "", now, expires_at=now - timedelta(seconds=1))
    pending = Infraction("c", 1, 2, InfractionType.MUTE, "", now, expires_at=now + timedelta(minutes=1))

    assert not permanent.is_due(now)
    assert lapsed.is_due(now)
    assert not pending.is_due(now)
    assert pending.is_due(now + timedelta(minutes=2))


def test_action_result_ok() -> None:
    assert ActionResult(InfractionType.MUTE, 1, ActionOutcome.ABSENT_TARGET).ok
    assert ActionResult(InfractionType.MUTE, 1, ActionOutcome.NO_OP).ok
    assert not ActionResult(InfractionType.MUTE, 1, ActionOutcome.FAILED).ok


def test_mirror_snapshots_from_discord_objects() -> None:
    role = FakeRole(5, "Muted", colour=0x123456, position=4)
    member = FakeMember(42, "alice", roles=[role])

    assert MirrorRole.from_role(role) == MirrorRole(5, "Muted", 0x123456, 4)

    snapshot = MirrorUser.from_member(member)
    assert snapshot.id == 42
    assert snapshot.role_ids == frozenset({5})
    assert snapshot.avatar_url == "https://cdn.example/42.png"
    assert snapshot.present is True

    assert MirrorUser.from_user(member, present=False, role_ids={5}) == MirrorUser(
        42, "alice", "0", "https://cdn.example/42.png", False, frozenset({5})
    )


def test_sync_stats_counts_mirror_writes() -> None:
    stats = SyncStats(roles_updated=1, roles_removed=2, users_updated=3, users_absent=4, infractions_total=10)
    assert stats.mirror_writes == 10
    assert SyncStats().mirror_writes == 0
