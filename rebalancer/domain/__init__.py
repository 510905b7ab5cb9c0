from __future__ import annotations

from .holdings import Holding, Transaction, merge_lots
from .registry import (
    Account,
    AllocationModel,
    ModelMember,
    RebalancingGroup,
    Security,
    Sleeve,
    SleeveMember,
    SleeveRegistry,
    validate_model_weights,
)

__all__ = [
    "Account",
    "AllocationModel",
    "Holding",
    "ModelMember",
    "RebalancingGroup",
    "Security",
    "Sleeve",
    "SleeveMember",
    "SleeveRegistry",
    "Transaction",
    "merge_lots",
    "validate_model_weights",
]
