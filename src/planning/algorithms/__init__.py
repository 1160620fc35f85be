"""
Flood-rescue dispatch algorithms

Module layout:
- base.py    geometry (Location, haversine distance)
- matching/  rescuer scoring and ranking
"""

from .base import Location, haversine_distance
from .matching import Candidate, RankedCandidate, ScoringContext, ScoringWeights, rank, score

__all__ = [
    "Location",
    "haversine_distance",
    "Candidate",
    "RankedCandidate",
    "ScoringContext",
    "ScoringWeights",
    "rank",
    "score",
]
