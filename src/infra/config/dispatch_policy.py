"""
Dispatch policy loading

Policy is data, not logic: radius ladder, scoring weights, verification
threshold, reward amounts and dedup radius all live here.

- Defaults reproduce the production policy.
- A deployment overrides any subset through a YAML file (``settings.policy_file``);
  keys are merged over the defaults, nested tables included.
- Invalid values raise at load time, never at dispatch time.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from src.core.config import settings
from src.planning.algorithms.matching import ScoringWeights

logger = logging.getLogger(__name__)


class VerificationPolicy(BaseModel):
    """Proof-of-rescue acceptance"""

    min_confidence: float = Field(0.65, ge=0.0, le=1.0)


class RewardPolicy(BaseModel):
    """Payout amount handed to the payout collaborator"""

    base_amount: float = Field(20.0, ge=0.0)
    priority_bonus: float = Field(5.0, ge=0.0)
    priority_bonus_min_priority: int = Field(5, ge=1, le=5)
    per_extra_person_bonus: float = Field(2.0, ge=0.0)
    extra_person_threshold: int = Field(3, ge=0)
    currency: str = "USDC"


class DispatchPolicy(BaseModel):
    radius_ladder_km: List[float] = Field(default_factory=lambda: [5.0, 10.0, 15.0])
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    verification: VerificationPolicy = Field(default_factory=VerificationPolicy)
    reward: RewardPolicy = Field(default_factory=RewardPolicy)
    dedup_radius_km: float = Field(0.05, gt=0.0)

    @field_validator("radius_ladder_km")
    @classmethod
    def _ladder_strictly_increasing(cls, v: List[float]) -> List[float]:
        if not v:
            raise ValueError("radius_ladder_km must not be empty")
        if any(r <= 0 for r in v):
            raise ValueError("radius_ladder_km entries must be positive")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("radius_ladder_km must be strictly increasing")
        return v

    @property
    def base_radius_km(self) -> float:
        return self.radius_ladder_km[0]

    @property
    def max_radius_km(self) -> float:
        return self.radius_ladder_km[-1]


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_policy(path: Optional[str] = None) -> DispatchPolicy:
    """Build the policy from defaults plus an optional YAML override file."""
    defaults = DispatchPolicy().model_dump()
    if not path:
        return DispatchPolicy.model_validate(defaults)

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise RuntimeError(f"policy file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise RuntimeError(f"{cfg_path} must contain a mapping")

    logger.info(f"Loaded dispatch policy overrides from {cfg_path}: {sorted(data)}")
    return DispatchPolicy.model_validate(_deep_merge(defaults, data))


@lru_cache()
def get_policy() -> DispatchPolicy:
    return load_policy(settings.policy_file)
