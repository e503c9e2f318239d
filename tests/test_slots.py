from __future__ import annotations

import asyncio

import pytest

from zigmirror.mirror.slots import DownloadSlots


@pytest.mark.asyncio
async def test_slot_is_removed_after_release():
    slots = DownloadSlots()

    async with slots.hold("a.tar.xz"):
        assert "a.tar.xz" in slots
        assert len(slots) == 1

    assert "a.tar.xz" not in slots
    assert len(slots) == 0


@pytest.mark.asyncio
async def test_slot_is_removed_when_body_raises():
    slots = DownloadSlots()

    with pytest.raises(RuntimeError):
        async with slots.hold("a.tar.xz"):
            raise RuntimeError("boom")

    assert len(slots) == 0


@pytest.mark.asyncio
async def test_same_key_is_mutually_exclusive():
    slots = DownloadSlots()
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with slots.hold("a.tar.xz"):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.005)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(6)))

    assert peak == 1
    assert len(slots) == 0


@pytest.mark.asyncio
async def test_distinct_keys_do_not_block_each_other():
    slots = DownloadSlots()
    entered = asyncio.Event()

    async with slots.hold("a.tar.xz"):
        async def other():
            async with slots.hold("b.tar.xz"):
                entered.set()

        await asyncio.wait_for(other(), timeout=1)

    assert entered.is_set()


@pytest.mark.asyncio
async def test_late_arrival_joins_lock_of_queued_waiter():
    slots = DownloadSlots()
    order: list[str] = []
    release = asyncio.Event()

    async def holder():
        async with slots.hold("a.tar.xz"):
            order.append("holder")
            await release.wait()

    async def follower(name: str):
        async with slots.hold("a.tar.xz"):
            order.append(name)
            await asyncio.sleep(0.005)
            order.append(f"{name}-done")

    first = asyncio.create_task(holder())
    await asyncio.sleep(0)
    waiter = asyncio.create_task(follower("waiter"))
    await asyncio.sleep(0)
    release.set()
    await first
    # the waiter still needs the slot, so a new caller must queue behind it
    late = asyncio.create_task(follower("late"))
    await asyncio.gather(waiter, late)

    assert order == ["holder", "waiter", "waiter-done", "late", "late-done"]
    assert len(slots) == 0


@pytest.mark.asyncio
async def test_cancelled_waiter_releases_its_claim():
    slots = DownloadSlots()
    release = asyncio.Event()

    async def holder():
        async with slots.hold("a.tar.xz"):
            await release.wait()

    async def waiter():
        async with slots.hold("a.tar.xz"):
            pass

    first = asyncio.create_task(holder())
    await asyncio.sleep(0)
    queued = asyncio.create_task(waiter())
    await asyncio.sleep(0)

    queued.cancel()
    with pytest.raises(asyncio.CancelledError):
        await queued
    release.set()
    await first

    assert len(slots) == 0
