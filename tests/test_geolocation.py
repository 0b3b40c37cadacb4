import asyncio

import pytest

from beauty_dispatch.errors import PermissionDenied, PositionTimeout, PositionUnavailable
from beauty_dispatch.models.domain import Coordinate
from beauty_dispatch.services.maps.geolocation import ReportedPositionSource


class Clock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _source(clock: Clock, timeout: float = 0.05) -> ReportedPositionSource:
    return ReportedPositionSource(timeout=timeout, maximum_age=300, clock=clock)


def test_recent_fix_is_returned_without_waiting():
    clock = Clock()
    source = _source(clock)
    source.report_position("phone", Coordinate(40.0, -73.0))
    clock.now += 299

    assert asyncio.run(source.resolve_current_position("phone")) == Coordinate(40.0, -73.0)


def test_stale_fix_times_out_when_no_new_fix_arrives():
    clock = Clock()
    source = _source(clock)
    source.report_position("phone", Coordinate(40.0, -73.0))
    clock.now += 301

    with pytest.raises(PositionTimeout):
        asyncio.run(source.resolve_current_position("phone"))


def test_waiting_request_receives_next_fix():
    source = _source(Clock(), timeout=1.0)

    async def scenario():
        waiter = asyncio.create_task(source.resolve_current_position("phone"))
        await asyncio.sleep(0)
        source.report_position("phone", Coordinate(51.5, -0.12))
        return await waiter

    assert asyncio.run(scenario()) == Coordinate(51.5, -0.12)


def test_permission_denied_is_raised_once():
    source = _source(Clock(), timeout=0.01)
    source.report_failure("phone", "permission_denied")

    with pytest.raises(PermissionDenied):
        asyncio.run(source.resolve_current_position("phone"))
    # not retried automatically: the next request waits for the user to act
    with pytest.raises(PositionTimeout):
        asyncio.run(source.resolve_current_position("phone"))


def test_waiting_request_receives_reported_failure():
    source = _source(Clock(), timeout=1.0)

    async def scenario():
        waiter = asyncio.create_task(source.resolve_current_position("phone"))
        await asyncio.sleep(0)
        source.report_failure("phone", "position_unavailable")
        return await waiter

    with pytest.raises(PositionUnavailable):
        asyncio.run(scenario())


def test_unknown_failure_code_is_rejected():
    with pytest.raises(ValueError):
        _source(Clock()).report_failure("phone", "battery_low")


def test_watch_yields_each_reported_fix():
    source = _source(Clock())

    async def scenario():
        received = []

        async def consume():
            async for fix in source.watch("truck-7"):
                received.append(fix.coordinate)
                if len(received) == 2:
                    break

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        source.report_position("truck-7", Coordinate(1.0, 1.0))
        source.report_position("other", Coordinate(9.0, 9.0))
        source.report_position("truck-7", Coordinate(1.1, 1.0))
        await asyncio.wait_for(consumer, timeout=1.0)
        return received

    assert asyncio.run(scenario()) == [Coordinate(1.0, 1.0), Coordinate(1.1, 1.0)]


def test_every_waiting_request_receives_reported_failure():
    source = _source(Clock(), timeout=1.0)

    async def scenario():
        waiters = [asyncio.create_task(source.resolve_current_position("phone")) for _ in range(2)]
        await asyncio.sleep(0)
        source.report_failure("phone", "permission_denied")
        return await asyncio.gather(*waiters, return_exceptions=True)

    results = asyncio.run(scenario())

    assert [type(result) for result in results] == [PermissionDenied, PermissionDenied]
    # delivered to the waiting requests, not kept for the next one
    with pytest.raises(PositionTimeout):
        asyncio.run(source.resolve_current_position("phone"))


def test_failure_without_fix_is_typed_after_waiting_request_times_out():
    clock = Clock()
    source = _source(clock, timeout=0.01)

    with pytest.raises(PositionTimeout):
        asyncio.run(source.resolve_current_position("tablet"))
    source.report_failure("tablet", "position_unavailable")

    with pytest.raises(PositionUnavailable):
        asyncio.run(source.resolve_current_position("tablet"))


def test_stale_entries_are_pruned():
    clock = Clock()
    source = _source(clock)
    source.report_position("old-phone", Coordinate(1.0, 1.0))
    source.report_failure("old-tablet", "timeout")
    clock.now += 301

    source.report_position("new-phone", Coordinate(2.0, 2.0))

    assert set(source._fixes) == {"new-phone"}
    assert source._failures == {}


def test_finished_requests_and_watches_release_their_slots():
    source = _source(Clock(), timeout=0.01)

    async def scenario():
        with pytest.raises(PositionTimeout):
            await source.resolve_current_position("phone")

        async def consume():
            async for _ in source.watch("truck-7"):
                break

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        assert "truck-7" in source._watchers
        source.report_position("truck-7", Coordinate(1.0, 1.0))
        await asyncio.wait_for(consumer, timeout=1.0)

    asyncio.run(scenario())

    assert source._waiters == {}
    assert source._watchers == {}
