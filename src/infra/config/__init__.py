"""
Deployment policy

Radius ladder, scoring weights, verification threshold and reward amounts,
overridable per deployment from YAML.
"""

from src.infra.config.dispatch_policy import (
    DispatchPolicy,
    RewardPolicy,
    VerificationPolicy,
    get_policy,
    load_policy,
)

__all__ = [
    "DispatchPolicy",
    "RewardPolicy",
    "VerificationPolicy",
    "get_policy",
    "load_policy",
]
