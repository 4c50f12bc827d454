"""Tests for the synchronous sync event bus."""

from unittest.mock import MagicMock

import pytest

from school_health.services.sync_bus import SYNC_DATA, SyncEvent, SyncEventBus


@pytest.fixture
def bus() -> SyncEventBus:
    return SyncEventBus(max_subscribers=3)


class TestPublish:
    def test_no_subscribers_returns_false(self, bus: SyncEventBus) -> None:
        assert bus.publish(SYNC_DATA) is False

    def test_handlers_run_in_subscription_order(self, bus: SyncEventBus) -> None:
        seen: list[str] = []
        bus.subscribe(SYNC_DATA, lambda event: seen.append("first"))
        bus.subscribe(SYNC_DATA, lambda event: seen.append("second"))
        bus.subscribe("OTHER", lambda event: seen.append("other"))

        assert bus.publish(SYNC_DATA) is True
        assert seen == ["first", "second"]

    def test_handler_receives_event_with_payload(self, bus: SyncEventBus) -> None:
        received: list[SyncEvent] = []
        bus.subscribe(SYNC_DATA, received.append)

        bus.publish(SYNC_DATA, {"action": "student_added"})

        assert received == [SyncEvent(name=SYNC_DATA, payload={"action": "student_added"})]

    def test_handler_exception_propagates(self, bus: SyncEventBus) -> None:
        def broken(event: SyncEvent) -> None:
            raise RuntimeError("handler failed")

        bus.subscribe(SYNC_DATA, broken)

        with pytest.raises(RuntimeError, match="handler failed"):
            bus.publish(SYNC_DATA)


class TestUnsubscribe:
    def test_removes_only_its_own_handler(self, bus: SyncEventBus) -> None:
        seen: list[str] = []

        def handler(event: SyncEvent) -> None:
            seen.append(event.name)

        first = bus.subscribe(SYNC_DATA, handler)
        bus.subscribe(SYNC_DATA, handler)

        first.unsubscribe()
        bus.publish(SYNC_DATA)

        assert seen == [SYNC_DATA]
        assert bus.subscriber_count(SYNC_DATA) == 1

    def test_handle_is_callable_and_idempotent(self, bus: SyncEventBus) -> None:
        subscription = bus.subscribe(SYNC_DATA, lambda event: None)

        subscription()
        subscription.unsubscribe()

        assert not subscription.active
        assert bus.subscriber_count(SYNC_DATA) == 0

    def test_unsubscribe_during_dispatch(self, bus: SyncEventBus) -> None:
        seen: list[str] = []

        def once(event: SyncEvent) -> None:
            seen.append("once")
            subscription.unsubscribe()

        subscription = bus.subscribe(SYNC_DATA, once)
        bus.subscribe(SYNC_DATA, lambda event: seen.append("always"))

        bus.publish(SYNC_DATA)
        bus.publish(SYNC_DATA)

        assert seen == ["once", "always", "always"]

    def test_clear(self, bus: SyncEventBus) -> None:
        subscription = bus.subscribe(SYNC_DATA, lambda event: None)
        bus.subscribe("OTHER", lambda event: None)

        bus.clear(SYNC_DATA)
        assert bus.subscriber_count(SYNC_DATA) == 0
        assert bus.subscriber_count("OTHER") == 1
        assert not subscription.active

        bus.clear()
        assert bus.subscriber_count("OTHER") == 0


class TestSoftCap:
    def test_exceeding_cap_warns_but_subscribes(self, bus: SyncEventBus) -> None:
        bus.logger = MagicMock()
        seen: list[int] = []
        for i in range(4):
            bus.subscribe(SYNC_DATA, lambda event, i=i: seen.append(i))

        bus.publish(SYNC_DATA)

        assert seen == [0, 1, 2, 3]
        assert bus.subscriber_count(SYNC_DATA) == 4
        bus.logger.warning.assert_called_once()
        assert bus.logger.warning.call_args.args[0] == "subscriber_soft_cap_exceeded"

    def test_within_cap_does_not_warn(self, bus: SyncEventBus) -> None:
        bus.logger = MagicMock()
        for _ in range(3):
            bus.subscribe(SYNC_DATA, lambda event: None)

        bus.logger.warning.assert_not_called()
