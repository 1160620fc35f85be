"""
Rescuer matching

Scores and ranks rescuers found inside the search radius of a ticket.
"""

from .rescuer_scoring import (
    Candidate,
    RankedCandidate,
    ScoringContext,
    ScoringWeights,
    rank,
    score,
    score_components,
)

__all__ = [
    "Candidate",
    "RankedCandidate",
    "ScoringContext",
    "ScoringWeights",
    "rank",
    "score",
    "score_components",
]
