from launchpad.models.pool import BinAmount, BinDistribution, PoolTierConfig
from launchpad.models.launch import (
    CANCELLABLE_STATES,
    LaunchFailure,
    LaunchRecord,
    LaunchRequest,
    LaunchState,
    StepAttempt,
    TokenAllocation,
)

__all__ = [
    "BinAmount",
    "BinDistribution",
    "CANCELLABLE_STATES",
    "LaunchFailure",
    "LaunchRecord",
    "LaunchRequest",
    "LaunchState",
    "PoolTierConfig",
    "StepAttempt",
    "TokenAllocation",
]
