"""Unit tests for the in-process resource lock registry."""

import asyncio

import pytest

from fleetdesk.services.calendar_service import ResourceLockRegistry


CAR = ("tenant-a", "car", "car-1")
DRIVER = ("tenant-a", "driver", "driver-1")


@pytest.mark.asyncio
async def test_holders_of_one_key_run_one_at_a_time():
    registry = ResourceLockRegistry()
    inside = 0
    most_inside = 0

    async def reserve():
        nonlocal inside, most_inside
        async with registry.hold([CAR, DRIVER]):
            inside += 1
            most_inside = max(most_inside, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(reserve() for _ in range(5)))

    assert most_inside == 1


@pytest.mark.asyncio
async def test_locks_are_dropped_once_released():
    """Locks for resources nobody is reserving do not accumulate."""
    registry = ResourceLockRegistry()

    for index in range(20):
        async with registry.hold([("tenant-a", "car", f"car-{index}")]):
            assert registry.size() == 1

    assert registry.size() == 0


@pytest.mark.asyncio
async def test_lock_survives_while_others_wait():
    registry = ResourceLockRegistry()
    release = asyncio.Event()
    order = []

    async def first():
        async with registry.hold([CAR]):
            order.append("first")
            await release.wait()

    async def second():
        async with registry.hold([CAR]):
            order.append("second")

    first_task = asyncio.create_task(first())
    await asyncio.sleep(0)
    second_task = asyncio.create_task(second())
    await asyncio.sleep(0)

    # Held by one, awaited by the other: still registered
    assert registry.size() == 1
    release.set()
    await asyncio.gather(first_task, second_task)

    assert order == ["first", "second"]
    assert registry.size() == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_releases_its_claim():
    registry = ResourceLockRegistry()
    release = asyncio.Event()

    async def holder():
        async with registry.hold([CAR]):
            await release.wait()

    async def waiter():
        async with registry.hold([CAR]):
            pass

    holder_task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiter_task = asyncio.create_task(waiter())
    await asyncio.sleep(0)

    waiter_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter_task

    release.set()
    await holder_task

    assert registry.size() == 0
