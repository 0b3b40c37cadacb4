import asyncio
from datetime import datetime, timezone

import pytest

from beauty_dispatch.data.deliveries_repository import DeliveryRepository
from beauty_dispatch.errors import (
    DeliveryNotFound,
    InvalidTransition,
    NoNextState,
    PersistenceError,
    StaleStatusError,
)
from beauty_dispatch.models.domain import DeliveryStatus
from beauty_dispatch.services.deliveries import (
    DeliveryTracker,
    TrackerRegistry,
    can_transition,
    is_terminal,
    next_status,
)
from beauty_dispatch.services.deliveries.change_feed import SupabaseChangeFeed
from fakes import FakeSupabaseClient, delivery_row

DELIVERED_AT = datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc)


def _tracker(client, driver_id="D1", feed=False):
    return DeliveryTracker(
        driver_id,
        DeliveryRepository(client),
        SupabaseChangeFeed(client) if feed else None,
        now=lambda: DELIVERED_AT,
    )


async def _settle():
    for _ in range(10):
        await asyncio.sleep(0)


def test_lifecycle_table():
    assert next_status(DeliveryStatus.ASSIGNED) is DeliveryStatus.PICKED_UP
    assert next_status(DeliveryStatus.PICKED_UP) is DeliveryStatus.IN_TRANSIT
    assert next_status(DeliveryStatus.IN_TRANSIT) is DeliveryStatus.DELIVERED
    assert next_status(DeliveryStatus.DELIVERED) is None
    assert next_status(DeliveryStatus.FAILED) is None
    assert is_terminal(DeliveryStatus.FAILED)
    assert not can_transition(DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT)
    assert can_transition(DeliveryStatus.IN_TRANSIT, DeliveryStatus.FAILED)
    assert DeliveryStatus.IN_TRANSIT.label == "in transit"


def test_advance_walks_happy_path_and_stamps_delivery_time():
    client = FakeSupabaseClient({"deliveries": [delivery_row("A")]})
    tracker = _tracker(client)

    async def scenario():
        await tracker.start()
        statuses = []
        for _ in range(3):
            statuses.append(await tracker.advance("A"))
            if tracker.get("A").status is not DeliveryStatus.DELIVERED:
                assert tracker.get("A").actual_delivery_time is None
        with pytest.raises(NoNextState):
            await tracker.advance("A")
        return statuses

    statuses = asyncio.run(scenario())

    assert statuses == [DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED]
    assert tracker.get("A").actual_delivery_time == DELIVERED_AT
    assert client.tables["deliveries"][0]["status"] == "delivered"
    assert client.tables["deliveries"][0]["actual_delivery_time"] == DELIVERED_AT.isoformat()


@pytest.mark.parametrize("status", ["assigned", "picked_up", "in_transit"])
def test_mark_failed_from_active_states(status):
    client = FakeSupabaseClient({"deliveries": [delivery_row("A", status=status)]})
    tracker = _tracker(client)

    result = asyncio.run(tracker.mark_failed("A"))

    assert result is DeliveryStatus.FAILED
    assert client.tables["deliveries"][0]["status"] == "failed"
    assert client.tables["deliveries"][0]["actual_delivery_time"] is None


@pytest.mark.parametrize("status", ["delivered", "failed"])
def test_terminal_deliveries_reject_transitions(status):
    client = FakeSupabaseClient({"deliveries": [delivery_row("A", status=status)]})
    tracker = _tracker(client)

    with pytest.raises(InvalidTransition):
        asyncio.run(tracker.mark_failed("A"))
    with pytest.raises(NoNextState):
        asyncio.run(tracker.advance("A"))
    assert [call[1] for call in client.calls] == ["select", "select"]


def test_failed_write_leaves_state_unchanged():
    client = FakeSupabaseClient({"deliveries": [delivery_row("A")]})
    tracker = _tracker(client)

    async def scenario():
        await tracker.refresh()
        client.fail_on.add("update")
        with pytest.raises(PersistenceError):
            await tracker.advance("A")

    asyncio.run(scenario())

    assert tracker.get("A").status is DeliveryStatus.ASSIGNED
    assert client.tables["deliveries"][0]["status"] == "assigned"


class RacingRepository(DeliveryRepository):
    """Another writer fails the delivery right after it is read."""

    async def get(self, delivery_id):
        record = await super().get(delivery_id)
        self._client.tables["deliveries"][0]["status"] = "failed"
        return record


def test_concurrent_writer_causes_stale_status_error():
    client = FakeSupabaseClient({"deliveries": [delivery_row("A")]})
    tracker = DeliveryTracker("D1", RacingRepository(client))

    with pytest.raises(StaleStatusError):
        asyncio.run(tracker.advance("A"))

    assert client.tables["deliveries"][0]["status"] == "failed"


def test_other_drivers_delivery_is_not_found():
    client = FakeSupabaseClient({"deliveries": [delivery_row("B", driver_id="D2")]})
    tracker = _tracker(client)

    with pytest.raises(DeliveryNotFound):
        asyncio.run(tracker.advance("B"))
    with pytest.raises(DeliveryNotFound):
        asyncio.run(tracker.mark_failed("missing"))


def test_concurrent_advances_are_serialized():
    client = FakeSupabaseClient({"deliveries": [delivery_row("A")]})
    tracker = _tracker(client)

    async def scenario():
        return await asyncio.gather(tracker.advance("A"), tracker.advance("A"))

    assert asyncio.run(scenario()) == [DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT]


def test_views_are_sorted_and_filtered():
    client = FakeSupabaseClient(
        {
            "deliveries": [
                delivery_row("old", assigned_at="2026-10-18T09:00:00Z"),
                delivery_row("done", status="delivered", assigned_at="2026-10-19T08:00:00Z"),
                delivery_row("new", status="in_transit", assigned_at="2026-10-19T11:00:00Z"),
            ]
        }
    )
    tracker = _tracker(client)

    asyncio.run(tracker.refresh())

    assert [record.id for record in tracker.deliveries] == ["new", "done", "old"]
    assert [record.id for record in tracker.active] == ["new", "old"]


def test_pushed_changes_reload_the_view():
    client = FakeSupabaseClient({"deliveries": [delivery_row("A")]})
    tracker = _tracker(client, feed=True)
    snapshots = []

    async def scenario():
        await tracker.start()
        tracker.subscribe(lambda records: snapshots.append([record.id for record in records]))
        channel = client.channels[0]

        client.tables["deliveries"].append(delivery_row("B", assigned_at="2026-10-19T11:00:00+00:00"))
        channel.emit({"eventType": "INSERT", "new": {"id": "B"}})
        await _settle()
        after_insert = [record.id for record in tracker.deliveries]

        client.tables["deliveries"][0]["driver_id"] = "D2"
        channel.emit({"eventType": "UPDATE", "new": {"id": "A"}})
        await _settle()
        after_reassign = [record.id for record in tracker.deliveries]

        await tracker.stop()
        return channel, after_insert, after_reassign

    channel, after_insert, after_reassign = asyncio.run(scenario())

    assert channel.bindings[0]["filter"] == "driver_id=eq.D1"
    assert channel.bindings[0]["table"] == "deliveries"
    assert after_insert == ["B", "A"]
    assert after_reassign == ["B"]
    assert snapshots == [["B", "A"], ["B"]]
    assert client.removed == [channel]
    assert not tracker.running


def test_registry_starts_once_and_stops_on_close():
    client = FakeSupabaseClient({"deliveries": [delivery_row("A")]})
    built = []

    async def factory(driver_id):
        tracker = _tracker(client, driver_id, feed=True)
        built.append(tracker)
        return tracker

    async def scenario():
        registry = TrackerRegistry(factory)
        first = await registry.get("D1")
        second = await registry.get("D1")
        assert first is second and first.running
        await registry.release("D1")
        assert not first.running
        third = await registry.get("D1")
        await registry.close()
        return third

    third = asyncio.run(scenario())

    assert len(built) == 2
    assert not third.running
    assert len(client.removed) == 2
