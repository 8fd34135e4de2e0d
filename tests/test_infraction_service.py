"""Tests for InfractionService and duration parsing."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from conftest import ROLE_IDS
from infracord.datatypes.infraction_datatypes import ActionOutcome, InfractionType, utcnow
from infracord.errors import InvalidDurationError, NotFoundError
from infracord.moderation.action_applier import ActionApplier
from infracord.moderation.audit import AuditEventKind
from infracord.moderation.infraction_service import InfractionService, format_duration, parse_duration
from infracord.scheduler.expiry_scheduler import ExpiryScheduler


@pytest_asyncio.fixture
async def scheduler(database, platform, sink):
    scheduler = ExpiryScheduler(database.infractions, ActionApplier(platform, ROLE_IDS), sink)
    scheduler.start()
    yield scheduler
    await scheduler.shutdown()


@pytest.fixture
def notifier():
    return AsyncMock(return_value=True)


@pytest.fixture
def service(database, platform, scheduler, sink, notifier):
    return InfractionService(database.infractions, scheduler.applier, scheduler, sink, notifier)


@pytest.mark.asyncio
async def test_timed_mute_lifecycle(service, scheduler, database, platform, sink) -> None:
    platform.add_member(42)
    before = utcnow()

    outcome = await service.create_infraction(InfractionType.MUTE, 42, 7, "spam", timedelta(minutes=10))

    infraction = outcome.infraction
    assert outcome.result.outcome is ActionOutcome.APPLIED
    assert infraction.active is True
    assert infraction.target_id == 42 and infraction.actor_id == 7
    expected = before + timedelta(minutes=10)
    assert abs((infraction.expires_at - expected).total_seconds()) <= 2
    assert platform.has_role(42, ROLE_IDS["muted"])
    assert infraction.id in scheduler
    assert sink.kinds() == [AuditEventKind.CREATED]

    # Ten minutes later
    scheduler.clock = lambda: utcnow() + timedelta(minutes=10, seconds=1)
    scheduler.schedule_reversal(infraction)
    await scheduler.join()

    assert not platform.has_role(42, ROLE_IDS["muted"])
    assert (await database.infractions.get(infraction.id)).active is False
    assert sink.kinds() == [AuditEventKind.CREATED, AuditEventKind.EXPIRED]


@pytest.mark.asyncio
@pytest.mark.parametrize("duration", [timedelta(0), timedelta(minutes=-5)])
async def test_non_positive_duration_is_rejected_before_persisting(service, database, platform, duration) -> None:
    platform.add_member(42)

    with pytest.raises(InvalidDurationError):
        await service.create_infraction(InfractionType.MUTE, 42, 7, "", duration)

    assert await database.infractions.count() == 0
    assert platform.calls == []


@pytest.mark.asyncio
async def test_duration_on_non_expiring_kind_is_rejected(service, database) -> None:
    with pytest.raises(InvalidDurationError):
        await service.create_infraction(InfractionType.WARN, 42, 7, "", timedelta(hours=1))
    assert await database.infractions.count() == 0


@pytest.mark.asyncio
async def test_permanent_mute_is_not_scheduled(service, scheduler, platform) -> None:
    platform.add_member(42)

    outcome = await service.create_infraction(InfractionType.MUTE, 42, 7, "", None)

    assert outcome.infraction.expires_at is None
    assert outcome.infraction.id not in scheduler


@pytest.mark.asyncio
async def test_kick_is_stored_inactive(service, platform) -> None:
    platform.add_member(42)

    outcome = await service.create_infraction(InfractionType.KICK, 42, 7, "rude")

    assert outcome.infraction.active is False
    assert 42 not in platform.members


@pytest.mark.asyncio
async def test_failed_apply_still_records(service, database, platform) -> None:
    platform.add_member(42)
    platform.failing.add("add_role")

    outcome = await service.create_infraction(InfractionType.MUTE, 42, 7, "", timedelta(minutes=5))

    assert not outcome.ok
    assert (await database.infractions.get(outcome.infraction.id)).active is True


@pytest.mark.asyncio
async def test_relayed_kinds_notify_target(service, notifier) -> None:
    await service.create_infraction(InfractionType.WARN, 42, 7, "be nice")
    await service.create_infraction(InfractionType.NOTE, 42, 7, "watch this one")

    notifier.assert_awaited_once()
    assert notifier.await_args.args[0].kind is InfractionType.WARN


@pytest.mark.asyncio
async def test_notifier_failure_is_ignored(service, notifier) -> None:
    notifier.side_effect = RuntimeError("DMs closed")

    outcome = await service.create_infraction(InfractionType.WARN, 42, 7, "")

    assert outcome.ok


@pytest.mark.asyncio
async def test_pardon_lifts_effect_and_cancels_timer(service, scheduler, database, platform, sink) -> None:
    platform.add_member(42)
    outcome = await service.create_infraction(InfractionType.MUTE, 42, 7, "", timedelta(hours=1))

    pardon = await service.pardon(InfractionType.MUTE, 42, 8)

    assert pardon.ok
    assert [p.id for p in pardon.pardoned] == [outcome.infraction.id]
    assert pardon.pardoned[0].active is False
    assert [r.outcome for r in pardon.results] == [ActionOutcome.REVERTED]
    assert (await database.infractions.get(outcome.infraction.id)).active is False
    assert outcome.infraction.id not in scheduler
    assert not platform.has_role(42, ROLE_IDS["muted"])
    assert sink.kinds() == [AuditEventKind.CREATED, AuditEventKind.PARDONED]
    assert sink.events[-1].actor_id == 8


@pytest.mark.asyncio
async def test_pardon_without_active_infraction_raises(service, platform) -> None:
    platform.add_member(42)
    await service.create_infraction(InfractionType.WARN, 42, 7, "")

    with pytest.raises(NotFoundError):
        await service.pardon(InfractionType.MUTE, 42, 7)


@pytest.mark.asyncio
async def test_target_is_told_before_the_ban(service, notifier, platform) -> None:
    platform.add_member(42)
    seen = {}

    async def record_state(infraction, **kwargs):
        seen["banned"] = 42 in platform.bans
        seen["member"] = 42 in platform.members
        return True

    notifier.side_effect = record_state

    outcome = await service.create_infraction(InfractionType.BAN, 42, 7, "raid", timedelta(days=1))

    assert seen == {"banned": False, "member": True}
    assert outcome.ok
    assert 42 in platform.bans


@pytest.mark.asyncio
async def test_kick_requires_member_in_guild(service, database, notifier) -> None:
    with pytest.raises(NotFoundError, match="not present on the server"):
        await service.create_infraction(InfractionType.KICK, 42, 7, "rude")

    assert await database.infractions.count() == 0
    notifier.assert_not_awaited()


@pytest.mark.asyncio
async def test_pardon_notifies_target(service, notifier, platform) -> None:
    platform.add_member(42)
    await service.create_infraction(InfractionType.MUTE, 42, 7, "spam")

    await service.pardon(InfractionType.MUTE, 42, 8)

    assert notifier.await_count == 2
    assert notifier.await_args.kwargs == {"pardoned": True}
    assert notifier.await_args.args[0].active is False


@pytest.mark.asyncio
async def test_failed_pardon_revert_is_reported_and_retryable(service, database, platform, sink) -> None:
    platform.add_member(42)
    created = (await service.create_infraction(InfractionType.MUTE, 42, 7, "spam")).infraction
    platform.failing.add("remove_role")

    pardon = await service.pardon(InfractionType.MUTE, 42, 8)

    assert not pardon.ok
    assert [r.outcome for r in pardon.failures] == [ActionOutcome.FAILED]
    assert (await database.infractions.get(created.id)).active is False
    assert platform.has_role(42, ROLE_IDS["muted"])

    # Discord is reachable again: pardoning once more lifts the leftover role
    platform.failing.discard("remove_role")
    retry = await service.pardon(InfractionType.MUTE, 42, 8)

    assert retry.ok
    assert retry.pardoned == []
    assert [r.outcome for r in retry.results] == [ActionOutcome.REVERTED]
    assert not platform.has_role(42, ROLE_IDS["muted"])
    assert sink.kinds()[-1] is AuditEventKind.PARDONED

    with pytest.raises(NotFoundError):
        await service.pardon(InfractionType.MUTE, 42, 8)


@pytest.mark.asyncio
async def test_leftover_retry_keeps_failing_while_discord_does(service, platform) -> None:
    platform.add_member(42, role_ids=[ROLE_IDS["muted"]])
    platform.failing.add("remove_role")

    retry = await service.pardon(InfractionType.MUTE, 42, 8)

    assert not retry.ok
    assert platform.has_role(42, ROLE_IDS["muted"])


@pytest.mark.asyncio
async def test_pardon_then_expiry_matches_expiry_then_pardon(service, scheduler, database, platform, sink) -> None:
    platform.add_member(42)
    first = (await service.create_infraction(InfractionType.MUTE, 42, 7, "", timedelta(hours=1))).infraction
    platform.add_member(43)
    second = (await service.create_infraction(InfractionType.MUTE, 43, 7, "", timedelta(hours=1))).infraction

    # Pardon first, then the expiry fires anyway
    await service.pardon(InfractionType.MUTE, 42, 7)
    scheduler.fire_now(first)
    await scheduler.join()

    # Expiry first, then a late pardon
    scheduler.fire_now(second)
    await scheduler.join()
    with pytest.raises(NotFoundError):
        await service.pardon(InfractionType.MUTE, 43, 7)

    for infraction, target in ((first, 42), (second, 43)):
        assert (await database.infractions.get(infraction.id)).active is False
        assert not platform.has_role(target, ROLE_IDS["muted"])

    lifted = [event.kind for event in sink.events if event.kind is not AuditEventKind.CREATED]
    assert lifted == [AuditEventKind.PARDONED, AuditEventKind.EXPIRED]


@pytest.mark.asyncio
async def test_history_lists_everything(service, platform) -> None:
    platform.add_member(42)
    await service.create_infraction(InfractionType.WARN, 42, 7, "one")
    await service.create_infraction(InfractionType.NOTE, 42, 7, "two")

    history = await service.history(42)

    assert {i.reason for i in history} == {"one", "two"}


@pytest.mark.parametrize(
    "text, expected",
    [
        ("10m", timedelta(minutes=10)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("2d", timedelta(days=2)),
        ("1w", timedelta(weeks=1)),
        ("45s", timedelta(seconds=45)),
        (" 1H 5M ", timedelta(hours=1, minutes=5)),
        ("", None),
        (None, None),
        ("permanent", None),
    ],
)
def test_parse_duration(text, expected) -> None:
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["0m", "abc", "10", "5x", "m10", "1h-5m"])
def test_parse_duration_rejects(text) -> None:
    with pytest.raises(InvalidDurationError):
        parse_duration(text)


def test_format_duration() -> None:
    assert format_duration(None) == "permanent"
    assert format_duration(timedelta(hours=1, minutes=30)) == "1h 30m"
    assert format_duration(timedelta(days=8)) == "1w 1d"
