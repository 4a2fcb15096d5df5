"""Tests for the auth event bus and the debounced reloader."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from feedcore.schemas.session import AuthEvent
from feedcore.services.auth_events import AuthEventBus, ReactiveReloader


class StubSynchronizer:
    def __init__(self) -> None:
        self.is_busy = False
        self.load_stored_auth = AsyncMock(return_value=None)


def test_emit_reaches_every_listener_in_order() -> None:
    bus = AuthEventBus()
    seen: list[tuple[str, AuthEvent]] = []
    bus.subscribe(lambda event: seen.append(("a", event)))
    bus.subscribe(lambda event: seen.append(("b", event)))

    bus.emit(AuthEvent.SIGNED_IN)

    assert seen == [("a", AuthEvent.SIGNED_IN), ("b", AuthEvent.SIGNED_IN)]


def test_failing_listener_does_not_stop_delivery(caplog: pytest.LogCaptureFixture) -> None:
    bus = AuthEventBus()
    seen: list[AuthEvent] = []

    def broken(event: AuthEvent) -> None:
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(seen.append)

    with caplog.at_level(logging.ERROR):
        bus.emit(AuthEvent.REFRESHED)

    assert seen == [AuthEvent.REFRESHED]
    assert any(record.getMessage() == "auth.listener_failed" for record in caplog.records)


def test_unsubscribe_during_emit_applies_from_next_emit() -> None:
    bus = AuthEventBus()
    seen: list[AuthEvent] = []
    unsubscribe_second = None

    def first(event: AuthEvent) -> None:
        unsubscribe_second()

    bus.subscribe(first)
    unsubscribe_second = bus.subscribe(seen.append)

    bus.emit(AuthEvent.SIGNED_IN)
    bus.emit(AuthEvent.SIGNED_IN)

    assert seen == [AuthEvent.SIGNED_IN]
    assert bus.listener_count == 1


@pytest.mark.asyncio
async def test_burst_of_events_collapses_into_one_reload() -> None:
    bus = AuthEventBus()
    sync = StubSynchronizer()
    reloader = ReactiveReloader(sync, bus, debounce_seconds=0.02)
    reloader.attach()

    for _ in range(5):
        bus.emit(AuthEvent.SIGNED_IN)
    bus.emit(AuthEvent.REFRESHED)
    await asyncio.sleep(0.06)
    await reloader.wait_idle()

    assert reloader.reload_count == 1
    sync.load_stored_auth.assert_awaited_once_with(force=True)


@pytest.mark.asyncio
async def test_events_while_busy_are_ignored() -> None:
    bus = AuthEventBus()
    sync = StubSynchronizer()
    sync.is_busy = True
    reloader = ReactiveReloader(sync, bus, debounce_seconds=0.01)
    reloader.attach()

    bus.emit(AuthEvent.SIGNED_IN)
    await asyncio.sleep(0.03)

    assert reloader.reload_count == 0
    sync.load_stored_auth.assert_not_called()


@pytest.mark.asyncio
async def test_signed_out_never_reloads_and_cancels_pending() -> None:
    bus = AuthEventBus()
    sync = StubSynchronizer()
    reloader = ReactiveReloader(sync, bus, debounce_seconds=0.02)
    reloader.attach()

    bus.emit(AuthEvent.SIGNED_IN)
    bus.emit(AuthEvent.SIGNED_OUT)
    await asyncio.sleep(0.05)

    assert reloader.reload_count == 0
    sync.load_stored_auth.assert_not_called()


@pytest.mark.asyncio
async def test_detach_stops_reacting() -> None:
    bus = AuthEventBus()
    sync = StubSynchronizer()
    reloader = ReactiveReloader(sync, bus, debounce_seconds=0.01)
    reloader.attach()
    reloader.detach()

    bus.emit(AuthEvent.SIGNED_IN)
    await asyncio.sleep(0.03)

    assert reloader.attached is False
    assert bus.listener_count == 0
    sync.load_stored_auth.assert_not_called()


def test_emit_outside_event_loop_is_skipped() -> None:
    bus = AuthEventBus()
    sync = StubSynchronizer()
    reloader = ReactiveReloader(sync, bus)
    reloader.attach()

    bus.emit(AuthEvent.SIGNED_IN)

    assert reloader.reload_count == 0
