"""Reward amount for a completed rescue"""

from __future__ import annotations

from src.domains.tickets.schemas import Ticket
from src.infra.config.dispatch_policy import RewardPolicy


def compute_reward(ticket: Ticket, policy: RewardPolicy) -> float:
    """
    base + priority bonus + per-person bonus beyond the threshold.

    Defaults: 20 base, +5 at priority 5, +2 for each person beyond 3.
    A priority-5 ticket for 5 people pays 20 + 5 + 2*2 = 29.
    """
    amount = policy.base_amount
    if ticket.priority >= policy.priority_bonus_min_priority:
        amount += policy.priority_bonus
    extra_people = ticket.victim_info.people_count - policy.extra_person_threshold
    if extra_people > 0:
        amount += extra_people * policy.per_extra_person_bonus
    return round(amount, 2)
