"""Tests for the in-process event bus."""

from unittest.mock import AsyncMock

import pytest

from rigpilot.events import EventBus, RigStatusChanged


def _event() -> RigStatusChanged:
    return RigStatusChanged(rig_id="rig-1", name="Garage", status="MINING", previous="STOPPED")


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_in_order() -> None:
    bus = EventBus()
    calls: list[str] = []

    async def first(event):
        calls.append("first")

    async def second(event):
        calls.append("second")

    bus.subscribe(first)
    bus.subscribe(second)
    await bus.publish(_event())
    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_block_others() -> None:
    bus = EventBus()
    broken = AsyncMock(side_effect=RuntimeError("boom"))
    healthy = AsyncMock()
    bus.subscribe(broken)
    bus.subscribe(healthy)

    event = _event()
    await bus.publish(event)
    healthy.assert_awaited_once_with(event)


@pytest.mark.asyncio
async def test_unsubscribe() -> None:
    bus = EventBus()
    subscriber = AsyncMock()
    bus.subscribe(subscriber)
    bus.unsubscribe(subscriber)
    bus.unsubscribe(subscriber)
    await bus.publish(_event())
    subscriber.assert_not_awaited()
