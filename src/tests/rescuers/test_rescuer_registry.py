"""In-memory rescuer registry: claim gate, keyed release, self-service status."""
from __future__ import annotations

import asyncio

import pytest

from src.core.exceptions import ConflictError, InvalidStateError, NotFoundError
from src.domains.rescuers.registry import MemoryRescuerRegistry
from src.domains.rescuers.schemas import RescuerCreate, RescuerStatus, VehicleType


def _registration(name: str = "Nguyen Van A") -> RescuerCreate:
    return RescuerCreate(
        name=name,
        phone="84912345678",
        lat=16.46,
        lng=107.59,
        vehicle_type=VehicleType.cano,
        vehicle_capacity=4,
        wallet_address="0xabc",
    )


async def _online_rescuer(registry: MemoryRescuerRegistry, status: RescuerStatus = RescuerStatus.ONLINE):
    rescuer = await registry.register(_registration())
    return await registry.set_status(rescuer.rescuer_id, status)


def test_register_starts_offline_with_full_rating() -> None:
    rescuer = asyncio.run(MemoryRescuerRegistry().register(_registration()))

    assert rescuer.rescuer_id.startswith("RSC_")
    assert rescuer.status == RescuerStatus.OFFLINE
    assert rescuer.rating == 5.0
    assert rescuer.completed_missions == 0
    assert rescuer.current_ticket_id is None


def test_only_one_concurrent_claim_wins() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await _online_rescuer(registry)
        results = await asyncio.gather(
            *[registry.transition_to_mission(rescuer.rescuer_id, f"T{i}") for i in range(5)],
            return_exceptions=True,
        )
        return results, await registry.get(rescuer.rescuer_id)

    results, rescuer = asyncio.run(scenario())

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert all(isinstance(e, ConflictError) and e.error_code == "RESCUER_UNAVAILABLE" for e in losers)
    assert rescuer.status == RescuerStatus.ON_MISSION
    assert rescuer.current_ticket_id == winners[0].current_ticket_id


@pytest.mark.parametrize("status", [RescuerStatus.OFFLINE, RescuerStatus.BUSY])
def test_claim_rejected_when_not_available(status: RescuerStatus) -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await _online_rescuer(registry, status)
        with pytest.raises(ConflictError):
            await registry.transition_to_mission(rescuer.rescuer_id, "T1")

    asyncio.run(scenario())


def test_release_with_credit_counts_once() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await _online_rescuer(registry, RescuerStatus.IDLE)
        await registry.transition_to_mission(rescuer.rescuer_id, "T1")
        await registry.release(rescuer.rescuer_id, ticket_id="T1", completed=True)
        return await registry.release(rescuer.rescuer_id, ticket_id="T1", completed=True)

    rescuer = asyncio.run(scenario())

    assert rescuer.status == RescuerStatus.IDLE
    assert rescuer.current_ticket_id is None
    assert rescuer.completed_missions == 1


def test_release_for_another_ticket_is_ignored() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await _online_rescuer(registry)
        await registry.transition_to_mission(rescuer.rescuer_id, "T1")
        return await registry.release(rescuer.rescuer_id, ticket_id="T2", completed=True)

    rescuer = asyncio.run(scenario())

    assert rescuer.status == RescuerStatus.ON_MISSION
    assert rescuer.current_ticket_id == "T1"
    assert rescuer.completed_missions == 0


def test_on_mission_is_not_self_service() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await _online_rescuer(registry)
        with pytest.raises(InvalidStateError):
            await registry.set_status(rescuer.rescuer_id, RescuerStatus.ON_MISSION)

        await registry.transition_to_mission(rescuer.rescuer_id, "T1")
        with pytest.raises(InvalidStateError):
            await registry.set_status(rescuer.rescuer_id, RescuerStatus.OFFLINE)

    asyncio.run(scenario())


def test_rating_is_clamped() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await registry.register(_registration())
        high = await registry.update_rating(rescuer.rescuer_id, 7.5)
        low = await registry.update_rating(rescuer.rescuer_id, -1)
        return high, low

    high, low = asyncio.run(scenario())

    assert high.rating == 5.0
    assert low.rating == 0.0


def test_location_update_and_unknown_id() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await registry.register(_registration())
        moved = await registry.update_location(rescuer.rescuer_id, 16.0, 108.0)
        with pytest.raises(NotFoundError):
            await registry.get("RSC_UNKNOWN")
        return rescuer, moved

    rescuer, moved = asyncio.run(scenario())

    assert (moved.location.lat, moved.location.lng) == (16.0, 108.0)
    assert moved.location.last_updated >= rescuer.location.last_updated


def test_returned_objects_are_copies() -> None:
    async def scenario():
        registry = MemoryRescuerRegistry()
        rescuer = await registry.register(_registration())
        rescuer.status = RescuerStatus.ON_MISSION
        return await registry.get(rescuer.rescuer_id)

    assert asyncio.run(scenario()).status == RescuerStatus.OFFLINE
