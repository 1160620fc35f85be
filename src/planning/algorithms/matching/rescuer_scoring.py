"""
Rescuer ranking for flood-rescue dispatch

Scoring:
========
score = distance + vehicle + capacity + rating + experience

- distance:   max(0, distance_cap - distance_km * distance_slope), zero beyond 5 km by default
- vehicle:    priority-vehicle bonus when the ticket prefers it (deep flood, priority >= 4),
              otherwise the per-vehicle table (cano 20, boat 15, others 0)
- capacity:   min(capacity * capacity_multiplier, capacity_cap)
- rating:     rating * rating_multiplier
- experience: min(completed_missions, experience_cap)

No normalization; the sum is rounded half-up to an int.

Ranking:
========
score desc, distance asc, rescuer_id asc. Identical inputs always produce the
same order.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from pydantic import BaseModel, Field


class ScoringWeights(BaseModel):
    """Weight table for rescuer scoring"""

    distance_cap: float = Field(40.0, ge=0.0, description="points for a rescuer at distance 0")
    distance_slope: float = Field(8.0, ge=0.0, description="points lost per km")
    priority_vehicle: str = Field("cano", description="vehicle preferred for deep-flood tickets")
    priority_vehicle_bonus: float = Field(30.0, ge=0.0)
    priority_vehicle_min_priority: int = Field(4, ge=1, le=5)
    vehicle_bonus: Dict[str, float] = Field(
        default_factory=lambda: {"cano": 20.0, "boat": 15.0},
        description="bonus per vehicle type when no preference applies; missing types score 0",
    )
    capacity_multiplier: float = Field(2.0, ge=0.0)
    capacity_cap: float = Field(15.0, ge=0.0)
    rating_multiplier: float = Field(3.0, ge=0.0)
    experience_cap: int = Field(10, ge=0)


@dataclass(frozen=True)
class ScoringContext:
    """Ticket-side inputs to scoring"""
    priority: int
    people_count: int
    prefer_priority_vehicle: bool

    @classmethod
    def from_ticket(cls, ticket: Any, weights: ScoringWeights) -> "ScoringContext":
        return cls(
            priority=ticket.priority,
            people_count=ticket.victim_info.people_count,
            prefer_priority_vehicle=ticket.priority >= weights.priority_vehicle_min_priority,
        )


@dataclass(frozen=True)
class Candidate:
    """A rescuer inside the search radius"""
    rescuer: Any
    distance_km: float

    @property
    def rescuer_id(self) -> str:
        return self.rescuer.rescuer_id


@dataclass(frozen=True)
class RankedCandidate:
    candidate: Candidate
    score: int

    @property
    def rescuer(self) -> Any:
        return self.candidate.rescuer

    @property
    def distance_km(self) -> float:
        return self.candidate.distance_km


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _vehicle_value(vehicle_type: Any) -> str:
    return getattr(vehicle_type, "value", vehicle_type)


def score_components(
    rescuer: Any,
    distance_km: float,
    context: ScoringContext,
    weights: ScoringWeights,
) -> Dict[str, float]:
    """Per-term breakdown, useful for logging why a rescuer was picked"""
    vehicle = _vehicle_value(rescuer.vehicle_type)
    if context.prefer_priority_vehicle and vehicle == weights.priority_vehicle:
        vehicle_score = weights.priority_vehicle_bonus
    else:
        vehicle_score = weights.vehicle_bonus.get(vehicle, 0.0)

    return {
        "distance": max(0.0, weights.distance_cap - distance_km * weights.distance_slope),
        "vehicle": vehicle_score,
        "capacity": min(rescuer.vehicle_capacity * weights.capacity_multiplier, weights.capacity_cap),
        "rating": rescuer.rating * weights.rating_multiplier,
        "experience": float(min(rescuer.completed_missions, weights.experience_cap)),
    }


def score(
    rescuer: Any,
    distance_km: float,
    context: ScoringContext,
    weights: ScoringWeights,
) -> int:
    return _round_half_up(sum(score_components(rescuer, distance_km, context, weights).values()))


def rank(
    candidates: Iterable[Candidate],
    context: ScoringContext,
    weights: ScoringWeights,
) -> List[RankedCandidate]:
    ranked = [
        RankedCandidate(candidate=c, score=score(c.rescuer, c.distance_km, context, weights))
        for c in candidates
    ]
    ranked.sort(key=lambda r: (-r.score, r.distance_km, r.candidate.rescuer_id))
    return ranked
