"""Ticket state machine through the in-memory registry."""
from __future__ import annotations

import asyncio

import pydantic
import pytest

from src.core.exceptions import ConflictError, InvalidStateError
from src.domains.tickets.lifecycle import can_transition
from src.domains.tickets.registry import MemoryTicketRegistry
from src.domains.tickets.schemas import (
    HOLDING_STATUSES, Ticket, TicketCreate, TicketLocation, TicketStatus, VerificationResult, VictimInfo,
)


def _payload(**overrides) -> TicketCreate:
    data = dict(
        location=TicketLocation(lat=16.0, lng=107.0, address_text="Hue"),
        victim_info=VictimInfo(phone="84912345678", people_count=2),
        priority=4,
        raw_message="help, water on the roof",
    )
    data.update(overrides)
    return TicketCreate(**data)


def test_priority_is_clamped_on_intake() -> None:
    assert _payload(priority=9).priority == 5
    assert _payload(priority=0).priority == 1
    assert _payload(priority="4").priority == 4


def test_missing_priority_falls_back_to_default() -> None:
    assert TicketCreate.model_validate({"location": {"lat": 16.0, "lng": 107.0}, "priority": None}).priority == 3


def test_non_numeric_priority_is_a_validation_error() -> None:
    with pytest.raises(pydantic.ValidationError):
        TicketCreate.model_validate({"location": {"lat": 16.0, "lng": 107.0}, "priority": "urgent"})
    with pytest.raises(pydantic.ValidationError):
        TicketCreate.model_validate({"location": {"lat": 16.0, "lng": 107.0}, "priority": [5]})


def _holds_rescuer_as_expected(ticket: Ticket) -> bool:
    """A rescuer is attached exactly while the ticket holds one; COMPLETED keeps it for audit."""
    holding = ticket.status in HOLDING_STATUSES or ticket.status == TicketStatus.COMPLETED
    return (ticket.assigned_rescuer_id is not None) == holding


def test_assignee_follows_holding_statuses() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        seen: list[Ticket] = []

        done = await registry.create(_payload())
        seen.append(done)
        seen.append(await registry.assign(done.ticket_id, "RSC_1"))
        seen.append(await registry.mark_in_progress(done.ticket_id))
        seen.append(await registry.mark_verified(done.ticket_id))
        seen.append((await registry.mark_completed(done.ticket_id))[0])

        dropped = await registry.create(_payload())
        seen.append(await registry.assign(dropped.ticket_id, "RSC_2"))
        seen.append(await registry.cancel(dropped.ticket_id))

        never_assigned = await registry.create(_payload())
        seen.append(await registry.cancel(never_assigned.ticket_id))
        return seen

    seen = asyncio.run(scenario())

    assert [t.status for t in seen] == [
        TicketStatus.OPEN, TicketStatus.ASSIGNED, TicketStatus.IN_PROGRESS, TicketStatus.VERIFIED,
        TicketStatus.COMPLETED, TicketStatus.ASSIGNED, TicketStatus.CANCELLED, TicketStatus.CANCELLED,
    ]
    assert all(_holds_rescuer_as_expected(t) for t in seen)


def test_transition_table() -> None:
    assert can_transition(TicketStatus.OPEN, TicketStatus.ASSIGNED)
    assert can_transition(TicketStatus.ASSIGNED, TicketStatus.CANCELLED)
    assert not can_transition(TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED)
    assert not can_transition(TicketStatus.OPEN, TicketStatus.COMPLETED)
    assert not can_transition(TicketStatus.COMPLETED, TicketStatus.OPEN)


def test_full_happy_path() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        await registry.assign(ticket.ticket_id, "RSC_1")
        await registry.mark_in_progress(ticket.ticket_id)
        await registry.mark_verified(ticket.ticket_id, VerificationResult(is_valid=True, confidence=0.9))
        ticket, transitioned = await registry.mark_completed(ticket.ticket_id)
        assert transitioned
        return ticket

    ticket = asyncio.run(scenario())

    assert ticket.ticket_id.startswith("SOS_VN_")
    assert ticket.status == TicketStatus.COMPLETED
    # kept for audit
    assert ticket.assigned_rescuer_id == "RSC_1"
    assert ticket.verification_result.confidence == 0.9
    assert ticket.verified_at is not None
    assert ticket.completed_at is not None


def test_second_assign_is_a_conflict() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        await registry.assign(ticket.ticket_id, "RSC_1")
        with pytest.raises(ConflictError) as exc_info:
            await registry.assign(ticket.ticket_id, "RSC_2")
        return exc_info.value, await registry.get(ticket.ticket_id)

    error, ticket = asyncio.run(scenario())

    assert error.error_code == "TICKET_NOT_OPEN"
    assert ticket.assigned_rescuer_id == "RSC_1"


def test_concurrent_assign_has_one_winner() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        return await asyncio.gather(
            registry.assign(ticket.ticket_id, "RSC_1"),
            registry.assign(ticket.ticket_id, "RSC_2"),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    assert sum(1 for r in results if isinstance(r, ConflictError)) == 1


def test_illegal_transitions_are_rejected() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        with pytest.raises(InvalidStateError):
            await registry.mark_in_progress(ticket.ticket_id)
        with pytest.raises(InvalidStateError):
            await registry.mark_completed(ticket.ticket_id)
        await registry.assign(ticket.ticket_id, "RSC_1")
        await registry.mark_in_progress(ticket.ticket_id)
        with pytest.raises(InvalidStateError):
            await registry.cancel(ticket.ticket_id)
        return await registry.get(ticket.ticket_id)

    assert asyncio.run(scenario()).status == TicketStatus.IN_PROGRESS


def test_verified_and_completed_are_idempotent() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        await registry.assign(ticket.ticket_id, "RSC_1")
        await registry.mark_in_progress(ticket.ticket_id)
        first = await registry.mark_verified(ticket.ticket_id)
        again = await registry.mark_verified(ticket.ticket_id)
        done = await registry.mark_completed(ticket.ticket_id)
        done_again = await registry.mark_completed(ticket.ticket_id)
        return first, again, done, done_again

    first, again, (done, transitioned), (done_again, transitioned_again) = asyncio.run(scenario())

    assert first.verified_at == again.verified_at
    assert done.completed_at == done_again.completed_at
    assert transitioned
    assert not transitioned_again


def test_cancel_clears_assignee() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        await registry.assign(ticket.ticket_id, "RSC_1")
        return await registry.cancel(ticket.ticket_id)

    ticket = asyncio.run(scenario())

    assert ticket.status == TicketStatus.CANCELLED
    assert ticket.assigned_rescuer_id is None


def test_merge_only_raises_counts_and_priority() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        ticket = await registry.create(_payload())
        lower = await registry.merge_info(ticket.ticket_id, people_count=1, priority=2)
        higher = await registry.merge_info(ticket.ticket_id, "two more kids", people_count=4, priority=5)
        return lower, higher

    (after_lower, applied_lower), (after_higher, applied_higher) = asyncio.run(scenario())

    assert applied_lower == []
    assert after_lower.victim_info.people_count == 2
    assert applied_higher == ["people_count", "priority", "note"]
    assert after_higher.priority == 5
    assert after_higher.victim_info.people_count == 4
    assert after_higher.victim_info.note.endswith("[Update] two more kids")


def test_find_active_helpers() -> None:
    async def scenario():
        registry = MemoryTicketRegistry()
        active = await registry.create(_payload())
        closed = await registry.create(_payload(location=TicketLocation(lat=17.0, lng=107.0)))
        await registry.cancel(closed.ticket_id)
        return (
            active,
            await registry.find_active_by_phone("84912345678"),
            await registry.find_active_near(16.0002, 107.0, 0.05),
            await registry.find_active_near(17.0, 107.0, 0.05),
        )

    active, by_phone, near, near_closed = asyncio.run(scenario())

    assert by_phone.ticket_id == active.ticket_id
    assert near.ticket_id == active.ticket_id
    assert near_closed is None
