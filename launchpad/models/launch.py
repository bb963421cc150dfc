"""
Launch request and launch record models
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from fractions import Fraction
from typing import Optional

from eth_utils import is_address

from launchpad.errors import InvalidLaunchRequest
from launchpad.models.pool import BinDistribution, PoolTierConfig

MAX_NAME_LENGTH = 32
MAX_SYMBOL_LENGTH = 10
SYMBOL_PATTERN = re.compile(r'^[A-Z0-9]+$')


class LaunchState(str, Enum):
    CREATED = "created"
    METADATA_PUBLISHED = "metadata_published"
    TOKEN_MINTED = "token_minted"
    POOL_PROVISIONED = "pool_provisioned"
    LIQUIDITY_CONFIGURED = "liquidity_configured"
    ANTI_SNIPER_ACTIVATED = "anti_sniper_activated"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LaunchState.COMPLETED, LaunchState.FAILED, LaunchState.CANCELLED)


# States in which nothing irreversible has happened yet
CANCELLABLE_STATES = (LaunchState.CREATED, LaunchState.METADATA_PUBLISHED)


@dataclass(frozen=True)
class LaunchRequest:
    """A user's request to mint a token and seed its pool"""
    token_name: str
    token_symbol: str
    creator_address: str
    tier: str  # basic, premium
    logo: bytes = field(repr=False)
    logo_content_type: str
    initial_price: Decimal
    description: Optional[str] = None
    website: Optional[str] = None

    def validate(self, tiers, min_price: Decimal, max_price: Decimal) -> None:
        """Raise InvalidLaunchRequest on the first problem found"""
        if not self.token_name or not self.token_name.strip():
            raise InvalidLaunchRequest("Token name is required")
        if len(self.token_name) > MAX_NAME_LENGTH:
            raise InvalidLaunchRequest(f"Token name must be at most {MAX_NAME_LENGTH} characters")

        if not self.token_symbol:
            raise InvalidLaunchRequest("Token symbol is required")
        if len(self.token_symbol) > MAX_SYMBOL_LENGTH:
            raise InvalidLaunchRequest(f"Token symbol must be at most {MAX_SYMBOL_LENGTH} characters")
        if not SYMBOL_PATTERN.match(self.token_symbol):
            raise InvalidLaunchRequest("Token symbol must be uppercase letters and digits only")

        if not is_address(self.creator_address):
            raise InvalidLaunchRequest(f"Invalid creator address: {self.creator_address}")

        if self.tier not in tiers:
            raise InvalidLaunchRequest(f"Unknown tier '{self.tier}' (expected one of: {', '.join(sorted(tiers))})")

        if not self.logo:
            raise InvalidLaunchRequest("Logo file is required")

        try:
            price = Decimal(self.initial_price)
        except (InvalidOperation, TypeError, ValueError):
            raise InvalidLaunchRequest(f"Invalid initial price: {self.initial_price!r}")
        if not price.is_finite() or price < min_price or price > max_price:
            raise InvalidLaunchRequest(f"Initial price must be between {min_price} and {max_price}")


@dataclass(frozen=True)
class TokenAllocation:
    """Supply split between the creator and the liquidity pool, in base units"""
    total_supply: int
    decimals: int
    creator_share: Fraction
    total_supply_base_units: int
    creator_amount: int
    liquidity_amount: int


@dataclass
class LaunchFailure:
    """Why a launch stopped"""
    step: str
    kind: str  # input, transient, ambiguous, rejected, internal
    message: str


@dataclass
class StepAttempt:
    """One call to an external collaborator, kept for the audit timeline"""
    launch_id: str
    step: str
    attempt: int
    outcome: str  # success, transient, ambiguous, rejected; reconciliation reads: found, missing
    error: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class LaunchRecord:
    """Persisted state of one launch - never deleted, only marked terminal"""
    launch_id: str
    request: LaunchRequest
    tier_config: PoolTierConfig
    state: LaunchState = LaunchState.CREATED
    allocation: Optional[TokenAllocation] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # Failure details (state == FAILED)
    failed_at: Optional[LaunchState] = None
    error: Optional[LaunchFailure] = None

    # Outputs accumulated step by step
    metadata_locator: Optional[str] = None
    metadata_hash: Optional[str] = None
    mint_salt: Optional[str] = None
    predicted_mint_address: Optional[str] = None
    mint_address: Optional[str] = None
    mint_receipt: Optional[str] = None
    active_bin: Optional[int] = None
    distribution: Optional[BinDistribution] = None
    pool_address: Optional[str] = None
    pool_receipt: Optional[str] = None
    liquidity_receipt: Optional[str] = None
    protection_receipt: Optional[str] = None

    # Write in flight when the record was last saved
    pending_step: Optional[str] = None
    cancel_requested: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def token_exists(self) -> bool:
        return self.mint_address is not None
