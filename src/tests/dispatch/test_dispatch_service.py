"""DispatchService: notifications, open-ticket sweep, cancel, stats."""
from __future__ import annotations

import asyncio
import math

import pytest

from src.core.exceptions import ConflictError, InvalidStateError, NotFoundError
from src.domains.dispatch.scheduler import DispatchScheduler
from src.domains.dispatch.service import DispatchService
from src.domains.rescuers.registry import MemoryRescuerRegistry
from src.domains.rescuers.schemas import Rescuer, RescuerLocation, RescuerStatus, VehicleType
from src.domains.tickets.registry import MemoryTicketRegistry
from src.domains.tickets.schemas import Ticket, TicketCreate, TicketLocation, TicketStatus, VictimInfo
from src.infra.clients.webhook_client import WebhookResponseError
from src.infra.config.dispatch_policy import DispatchPolicy
from src.planning.algorithms.base import EARTH_RADIUS_KM

KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180


class _RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[tuple] = []
        self.fail = fail

    async def notify_assignment(self, ticket_id: str, rescuer_id: str) -> None:
        self.events.append(("assigned", ticket_id, rescuer_id))
        if self.fail:
            raise WebhookResponseError("HTTP 502: bad gateway")

    async def broadcast(self, ticket_id: str) -> None:
        self.events.append(("broadcast", ticket_id))

    async def notify_completion(self, ticket_id: str) -> None:
        self.events.append(("completed", ticket_id))


def _build_rescuer(rescuer_id: str, km_north: float, capacity: int = 4) -> Rescuer:
    return Rescuer(
        rescuer_id=rescuer_id,
        name=rescuer_id,
        phone="84900000000",
        status=RescuerStatus.IDLE,
        location=RescuerLocation(lat=16.0 + km_north / KM_PER_DEGREE, lng=107.0),
        vehicle_type=VehicleType.boat,
        vehicle_capacity=capacity,
    )


def _payload(priority: int = 3, people: int = 1) -> TicketCreate:
    return TicketCreate(
        location=TicketLocation(lat=16.0, lng=107.0),
        victim_info=VictimInfo(people_count=people),
        priority=priority,
    )


def _build_service(notifier=None, tickets: MemoryTicketRegistry = None) -> DispatchService:
    tickets, rescuers = tickets or MemoryTicketRegistry(), MemoryRescuerRegistry()
    policy = DispatchPolicy()
    return DispatchService(
        tickets, rescuers, DispatchScheduler(tickets, rescuers, policy), notifier or _RecordingNotifier(),
    )


def test_assignment_notifies_rescuer() -> None:
    notifier = _RecordingNotifier()
    service = _build_service(notifier)

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        ticket = await service.tickets.create(_payload())
        return await service.dispatch(ticket.ticket_id)

    result = asyncio.run(scenario())

    assert result.assigned
    assert notifier.events == [("assigned", result.ticket.ticket_id, "R1")]


def test_exhaustion_broadcasts() -> None:
    notifier = _RecordingNotifier()
    service = _build_service(notifier)

    async def scenario():
        ticket = await service.tickets.create(_payload())
        return await service.dispatch(ticket.ticket_id)

    result = asyncio.run(scenario())

    assert not result.assigned
    assert notifier.events == [("broadcast", result.ticket.ticket_id)]


def test_notifier_failure_does_not_undo_assignment() -> None:
    service = _build_service(_RecordingNotifier(fail=True))

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        ticket = await service.tickets.create(_payload())
        await service.dispatch(ticket.ticket_id)
        return await service.tickets.get(ticket.ticket_id)

    ticket = asyncio.run(scenario())

    assert ticket.status == TicketStatus.ASSIGNED


def test_sweep_serves_highest_priority_first() -> None:
    service = _build_service()

    async def scenario():
        service.rescuers.add(_build_rescuer("ONLY", 1.0))
        low = await service.tickets.create(_payload(priority=2))
        high = await service.tickets.create(_payload(priority=5))
        sweep = await service.dispatch_open()
        return sweep, low, high

    sweep, low, high = asyncio.run(scenario())

    assert sweep.assigned == 1
    assert sweep.exhausted == 1
    assert sweep.skipped == 0
    assert sweep.results[0].ticket.ticket_id == high.ticket_id
    assert sweep.results[0].assigned
    assert sweep.results[1].ticket.ticket_id == low.ticket_id


def test_cancel_assigned_ticket_frees_rescuer() -> None:
    service = _build_service()

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        ticket = await service.tickets.create(_payload())
        await service.dispatch(ticket.ticket_id)
        cancelled = await service.cancel(ticket.ticket_id)
        return cancelled, await service.rescuers.get("R1")

    cancelled, rescuer = asyncio.run(scenario())

    assert cancelled.status == TicketStatus.CANCELLED
    assert cancelled.assigned_rescuer_id is None
    assert rescuer.status == RescuerStatus.IDLE
    assert rescuer.completed_missions == 0


def test_start_then_cancel_is_rejected() -> None:
    service = _build_service()

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        ticket = await service.tickets.create(_payload())
        await service.dispatch(ticket.ticket_id)
        started = await service.start(ticket.ticket_id)
        with pytest.raises(InvalidStateError):
            await service.cancel(ticket.ticket_id)
        return started

    started = asyncio.run(scenario())

    assert started.status == TicketStatus.IN_PROGRESS


def test_stats_counts_by_status() -> None:
    service = _build_service()

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        offline = _build_rescuer("R2", 1.0)
        offline.status = RescuerStatus.OFFLINE
        service.rescuers.add(offline)
        first = await service.tickets.create(_payload())
        await service.tickets.create(_payload())
        await service.dispatch(first.ticket_id)
        return await service.stats()

    stats = asyncio.run(scenario())

    assert stats.tickets.total == 2
    assert stats.tickets.open == 1
    assert stats.tickets.assigned == 1
    assert stats.rescuers.total == 2
    assert stats.rescuers.on_mission == 1
    assert stats.rescuers.offline == 1
    assert stats.rescuers.available == 0


class _RoundTripTicketRegistry(MemoryTicketRegistry):
    """Suspends after each read, so the read can go stale like a remote call"""

    async def get(self, ticket_id: str) -> Ticket:
        ticket = await super().get(ticket_id)
        await asyncio.sleep(0)
        return ticket


def test_rescuer_accepts_open_ticket() -> None:
    notifier = _RecordingNotifier()
    service = _build_service(notifier)

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 2.0))
        ticket = await service.tickets.create(_payload())
        return await service.accept(ticket.ticket_id, "R1"), await service.rescuers.get("R1")

    result, rescuer = asyncio.run(scenario())

    assert result.assigned
    assert result.ticket.status == TicketStatus.ASSIGNED
    assert result.ticket.assigned_rescuer_id == "R1"
    assert result.distance_km == pytest.approx(2.0, abs=0.01)
    assert rescuer.status == RescuerStatus.ON_MISSION
    assert rescuer.current_ticket_id == result.ticket.ticket_id
    assert notifier.events == [("assigned", result.ticket.ticket_id, "R1")]


def test_first_accept_wins_the_race() -> None:
    service = _build_service(tickets=_RoundTripTicketRegistry())

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        service.rescuers.add(_build_rescuer("R2", 3.0))
        ticket = await service.tickets.create(_payload())
        results = await asyncio.gather(
            service.accept(ticket.ticket_id, "R1"),
            service.accept(ticket.ticket_id, "R2"),
            return_exceptions=True,
        )
        return (
            results,
            await service.tickets.get(ticket.ticket_id),
            await service.rescuers.get("R1"),
            await service.rescuers.get("R2"),
        )

    results, ticket, r1, r2 = asyncio.run(scenario())

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, ConflictError)]
    assert len(winners) == 1 and len(losers) == 1
    assert ticket.assigned_rescuer_id == winners[0].rescuer.rescuer_id
    assert f"held by {ticket.assigned_rescuer_id}" in losers[0].message
    # the loser's claim was rolled back
    assert sorted(r.status for r in (r1, r2)) == sorted([RescuerStatus.ON_MISSION, RescuerStatus.IDLE])
    assert sum(1 for r in (r1, r2) if r.current_ticket_id == ticket.ticket_id) == 1


def test_accept_after_assignment_names_the_holder() -> None:
    service = _build_service()

    async def scenario():
        service.rescuers.add(_build_rescuer("R1", 1.0))
        service.rescuers.add(_build_rescuer("R2", 1.5))
        ticket = await service.tickets.create(_payload())
        await service.accept(ticket.ticket_id, "R1")
        with pytest.raises(ConflictError) as exc_info:
            await service.accept(ticket.ticket_id, "R2")
        return exc_info.value, await service.rescuers.get("R2")

    error, r2 = asyncio.run(scenario())

    assert error.error_code == "TICKET_ALREADY_TAKEN"
    assert "R1" in error.message
    assert error.detail["details"]["assigned_rescuer_id"] == "R1"
    assert r2.status == RescuerStatus.IDLE


def test_accept_rejections() -> None:
    service = _build_service()

    async def scenario():
        busy = _build_rescuer("R1", 1.0)
        busy.status = RescuerStatus.OFFLINE
        service.rescuers.add(busy)
        service.rescuers.add(_build_rescuer("R2", 1.0))
        ticket = await service.tickets.create(_payload())
        cancelled = await service.tickets.create(_payload())
        await service.tickets.cancel(cancelled.ticket_id)

        with pytest.raises(NotFoundError):
            await service.accept("SOS_VN_NOPE", "R2")
        with pytest.raises(NotFoundError):
            await service.accept(ticket.ticket_id, "RSC_NOPE")
        with pytest.raises(InvalidStateError):
            await service.accept(cancelled.ticket_id, "R2")
        with pytest.raises(ConflictError) as exc_info:
            await service.accept(ticket.ticket_id, "R1")
        return exc_info.value, await service.tickets.get(ticket.ticket_id)

    unavailable, ticket = asyncio.run(scenario())

    assert unavailable.error_code == "RESCUER_UNAVAILABLE"
    assert ticket.status == TicketStatus.OPEN
