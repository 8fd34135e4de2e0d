"""Tests for ExpiryScheduler."""

from datetime import timedelta

import pytest
import pytest_asyncio

from conftest import ROLE_IDS, eventually
from infracord.datatypes.infraction_datatypes import InfractionType, utcnow
from infracord.moderation.action_applier import ActionApplier
from infracord.moderation.audit import AuditEventKind
from infracord.scheduler.expiry_scheduler import ExpiryScheduler, ReversalState


@pytest_asyncio.fixture
async def scheduler(database, platform, sink):
    scheduler = ExpiryScheduler(database.infractions, ActionApplier(platform, ROLE_IDS), sink)
    scheduler.start()
    yield scheduler
    await scheduler.shutdown()


async def _muted(database, platform, expires_in: timedelta):
    member = platform.add_member(42, role_ids=[ROLE_IDS["muted"]])
    infraction = await database.infractions.create(
        42, 7, InfractionType.MUTE, "spam", utcnow() + expires_in
    )
    return member, infraction


@pytest.mark.asyncio
async def test_fire_now_reverts_deactivates_and_publishes(scheduler, database, platform, sink) -> None:
    _, infraction = await _muted(database, platform, timedelta(minutes=10))

    scheduler.fire_now(infraction)
    await scheduler.join()

    assert not platform.has_role(42, ROLE_IDS["muted"])
    assert (await database.infractions.get(infraction.id)).active is False
    assert sink.kinds() == [AuditEventKind.EXPIRED]
    assert sink.events[0].infraction.active is False
    assert infraction.id not in scheduler


@pytest.mark.asyncio
async def test_past_due_time_fires_immediately(scheduler, database, platform, sink) -> None:
    _, infraction = await _muted(database, platform, timedelta(minutes=10))

    scheduler.schedule_reversal(infraction, utcnow() - timedelta(hours=1))
    await scheduler.join()

    assert sink.kinds() == [AuditEventKind.EXPIRED]


@pytest.mark.asyncio
async def test_short_timer_fires_on_its_own(scheduler, database, platform, sink) -> None:
    _, infraction = await _muted(database, platform, timedelta(minutes=10))

    scheduler.schedule_reversal(infraction, utcnow() + timedelta(milliseconds=50))
    assert scheduler.state_of(infraction.id) is ReversalState.SCHEDULED

    await eventually(lambda: sink.events)
    assert (await database.infractions.get(infraction.id)).active is False


@pytest.mark.asyncio
async def test_cancel_removes_pending_timer(scheduler, database, platform, sink) -> None:
    _, infraction = await _muted(database, platform, timedelta(hours=1))
    scheduler.schedule_reversal(infraction)

    assert infraction.id in scheduler
    assert scheduler.pending_ids() == [infraction.id]

    assert scheduler.cancel(infraction.id) is True
    assert scheduler.cancel(infraction.id) is False
    assert len(scheduler) == 0
    assert (await database.infractions.get(infraction.id)).active is True
    assert platform.has_role(42, ROLE_IDS["muted"])
    assert sink.events == []


@pytest.mark.asyncio
async def test_rescheduling_keeps_a_single_handle(scheduler, database, platform) -> None:
    _, infraction = await _muted(database, platform, timedelta(hours=1))

    first = scheduler.schedule_reversal(infraction)
    scheduler.schedule_reversal(infraction, utcnow() + timedelta(hours=2))
    await eventually(lambda: first.done())

    assert first.cancelled()
    assert len(scheduler) == 1


@pytest.mark.asyncio
async def test_second_fire_is_not_effective(scheduler, database, platform, sink) -> None:
    _, infraction = await _muted(database, platform, timedelta(minutes=10))

    scheduler.fire_now(infraction)
    await scheduler.join()
    platform.add_member(42, role_ids=[ROLE_IDS["muted"]])

    scheduler.fire_now(infraction)
    await scheduler.join()

    assert sink.kinds() == [AuditEventKind.EXPIRED]
    assert platform.has_role(42, ROLE_IDS["muted"])


@pytest.mark.asyncio
async def test_failed_revert_keeps_record_active(scheduler, database, platform, sink) -> None:
    _, infraction = await _muted(database, platform, timedelta(minutes=10))
    platform.failing.add("remove_role")

    scheduler.fire_now(infraction)
    await scheduler.join()

    assert (await database.infractions.get(infraction.id)).active is True
    assert infraction.id not in scheduler
    assert sink.events == []


@pytest.mark.asyncio
async def test_recover_all_rebuilds_timers(scheduler, database, platform, sink) -> None:
    store = database.infractions
    platform.add_member(42, role_ids=[ROLE_IDS["muted"]])
    overdue = await store.create(42, 7, InfractionType.MUTE, "", utcnow() - timedelta(minutes=1))
    pending = await store.create(43, 7, InfractionType.BAN, "", utcnow() + timedelta(days=1))
    await store.create(44, 7, InfractionType.BAN, "", None)

    assert await scheduler.recover_all() == 2

    await eventually(lambda: overdue.id not in scheduler)
    assert (await store.get(overdue.id)).active is False
    assert scheduler.pending_ids() == [pending.id]


@pytest.mark.asyncio
async def test_injected_clock_decides_what_is_due(database, platform, sink) -> None:
    scheduler = ExpiryScheduler(
        database.infractions,
        ActionApplier(platform, ROLE_IDS),
        sink,
        clock=lambda: utcnow() + timedelta(hours=1),
    )
    scheduler.start()
    _, infraction = await _muted(database, platform, timedelta(minutes=10))

    scheduler.schedule_reversal(infraction)
    await scheduler.join()

    assert sink.kinds() == [AuditEventKind.EXPIRED]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_scheduling_requires_a_running_scheduler(database, platform) -> None:
    scheduler = ExpiryScheduler(database.infractions, ActionApplier(platform, ROLE_IDS))
    _, infraction = await _muted(database, platform, timedelta(minutes=10))

    with pytest.raises(RuntimeError):
        scheduler.schedule_reversal(infraction)


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_timers(scheduler, database, platform) -> None:
    _, infraction = await _muted(database, platform, timedelta(hours=1))
    task = scheduler.schedule_reversal(infraction)

    await scheduler.shutdown()

    assert task.cancelled()
    assert len(scheduler) == 0
    assert not scheduler.running
