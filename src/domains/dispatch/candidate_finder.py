"""
Geospatial candidate finder

Straight-line (haversine) search over the rescuers the registry reports as
eligible. Deterministic order: distance asc, then rescuer_id asc.
"""

from __future__ import annotations

import logging
from typing import Iterable

from src.domains.rescuers.registry import RescuerRegistry
from src.domains.rescuers.schemas import ELIGIBLE_STATUSES, RescuerStatus
from src.planning.algorithms.base import Location, haversine_distance
from src.planning.algorithms.matching import Candidate


logger = logging.getLogger(__name__)


class CandidateFinder:
    def __init__(self, rescuers: RescuerRegistry) -> None:
        self._rescuers = rescuers

    async def find_candidates(
        self,
        center: Location,
        radius_km: float,
        status_filter: Iterable[RescuerStatus] = ELIGIBLE_STATUSES,
        min_capacity: int = 1,
    ) -> list[Candidate]:
        """Rescuers within ``radius_km`` of ``center``; empty list when none."""
        found: list[Candidate] = []
        for rescuer in await self._rescuers.list_eligible(status_filter):
            if rescuer.vehicle_capacity < min_capacity:
                continue
            distance = haversine_distance(
                center, Location(lat=rescuer.location.lat, lng=rescuer.location.lng)
            )
            if distance <= radius_km:
                found.append(Candidate(rescuer=rescuer, distance_km=distance))

        found.sort(key=lambda c: (c.distance_km, c.rescuer_id))
        logger.debug(f"{len(found)} candidates within {radius_km}km of ({center.lat}, {center.lng})")
        return found
