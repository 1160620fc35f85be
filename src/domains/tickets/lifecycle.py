"""
Ticket state machine

OPEN -> ASSIGNED -> IN_PROGRESS -> VERIFIED -> COMPLETED
OPEN -> CANCELLED, ASSIGNED -> CANCELLED

Both registry backends apply these rules so that memory and SQL storage
behave identically.
"""

from __future__ import annotations

from typing import Optional

from src.core.exceptions import ConflictError, InvalidStateError
from .schemas import Ticket, TicketStatus, VerificationResult, utcnow


VALID_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.OPEN: frozenset({TicketStatus.ASSIGNED, TicketStatus.CANCELLED}),
    TicketStatus.ASSIGNED: frozenset({TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED}),
    TicketStatus.IN_PROGRESS: frozenset({TicketStatus.VERIFIED}),
    TicketStatus.VERIFIED: frozenset({TicketStatus.COMPLETED}),
    TicketStatus.COMPLETED: frozenset(),
    TicketStatus.CANCELLED: frozenset(),
}


def can_transition(current: TicketStatus, target: TicketStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def _require(ticket: Ticket, target: TicketStatus, operation: str) -> None:
    if not can_transition(ticket.status, target):
        raise InvalidStateError("Ticket", ticket.ticket_id, ticket.status.value, operation)


def apply_assign(ticket: Ticket, rescuer_id: str) -> Ticket:
    # losing the OPEN race is a conflict, not a caller error
    if ticket.status != TicketStatus.OPEN:
        holder = f", held by {ticket.assigned_rescuer_id}" if ticket.assigned_rescuer_id else ""
        raise ConflictError(
            error_code="TICKET_NOT_OPEN",
            message=f"Ticket {ticket.ticket_id} is no longer OPEN (status {ticket.status.value}{holder})",
            details={"ticket_id": ticket.ticket_id, "status": ticket.status.value,
                     "assigned_rescuer_id": ticket.assigned_rescuer_id},
        )
    ticket.status = TicketStatus.ASSIGNED
    ticket.assigned_rescuer_id = rescuer_id
    ticket.updated_at = utcnow()
    return ticket


def apply_in_progress(ticket: Ticket) -> Ticket:
    _require(ticket, TicketStatus.IN_PROGRESS, "start")
    ticket.status = TicketStatus.IN_PROGRESS
    ticket.updated_at = utcnow()
    return ticket


def apply_verified(ticket: Ticket, result: Optional[VerificationResult]) -> Ticket:
    if ticket.status == TicketStatus.VERIFIED:
        return ticket
    _require(ticket, TicketStatus.VERIFIED, "verify")
    now = utcnow()
    ticket.status = TicketStatus.VERIFIED
    ticket.verification_result = result
    ticket.verified_at = now
    ticket.updated_at = now
    return ticket


def apply_completed(ticket: Ticket) -> bool:
    """Returns True only for the call that moved the ticket to COMPLETED."""
    if ticket.status == TicketStatus.COMPLETED:
        return False
    _require(ticket, TicketStatus.COMPLETED, "complete")
    now = utcnow()
    ticket.status = TicketStatus.COMPLETED
    ticket.completed_at = now
    ticket.updated_at = now
    return True


def apply_cancel(ticket: Ticket) -> Ticket:
    _require(ticket, TicketStatus.CANCELLED, "cancel")
    ticket.status = TicketStatus.CANCELLED
    ticket.assigned_rescuer_id = None
    ticket.updated_at = utcnow()
    return ticket


def apply_merge(
    ticket: Ticket,
    additional_info: Optional[str] = None,
    people_count: Optional[int] = None,
    priority: Optional[int] = None,
) -> list[str]:
    """Fold duplicate-report info into a ticket. Counts and priority only go up."""
    applied: list[str] = []
    if people_count and people_count > ticket.victim_info.people_count:
        ticket.victim_info.people_count = people_count
        applied.append("people_count")
    if priority and priority > ticket.priority:
        ticket.priority = priority
        applied.append("priority")
    if additional_info:
        ticket.victim_info.note = f"{ticket.victim_info.note}\n[Update] {additional_info}".strip()
        applied.append("note")
    if applied:
        ticket.updated_at = utcnow()
    return applied
