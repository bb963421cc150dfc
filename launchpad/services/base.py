"""
Contracts for the external systems a launch talks to.

Implementations raise PublishError / MintError / ProvisionError with an
ErrorKind so the orchestrator can decide between retry, reconcile and fail.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from launchpad.models import BinDistribution


@dataclass(frozen=True)
class PublishResult:
    locator: str
    content_hash: str


@dataclass(frozen=True)
class MintResult:
    mint_address: str
    mint_receipt: Optional[str]


@dataclass(frozen=True)
class PoolResult:
    pool_address: str
    receipt: Optional[str] = None


@dataclass(frozen=True)
class ProvisionReceipt:
    receipt: Optional[str]


class MetadataPublisher(Protocol):
    async def publish(self, content: bytes, content_type: str, attributes: Dict) -> PublishResult:
        ...


class TokenMinter(Protocol):
    def predict_address(self, salt: str) -> str:
        """Address the token minted with ``salt`` will have"""
        ...

    async def mint(self, name: str, symbol: str, metadata_locator: str, creator_address: str,
                   creator_amount: int, liquidity_amount: int, decimals: int, salt: str) -> MintResult:
        ...

    async def find_mint(self, mint_address: str) -> Optional[MintResult]:
        """Reconciliation read: the token if it already exists on chain"""
        ...


class PoolProvisioner(Protocol):
    async def create_pool(self, base_mint: str, quote_mint: str, step_bps: int, base_fee_bps: int,
                          active_bin: int) -> PoolResult:
        ...

    async def find_pool(self, base_mint: str, quote_mint: str, step_bps: int) -> Optional[PoolResult]:
        ...

    async def seed_liquidity(self, pool_address: str, distribution: BinDistribution) -> ProvisionReceipt:
        ...

    async def has_liquidity(self, pool_address: str) -> bool:
        ...

    async def activate_protection(self, pool_address: str, delay_seconds: int,
                                  max_buy_per_tx: int) -> ProvisionReceipt:
        ...
