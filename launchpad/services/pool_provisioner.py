"""
Bin-based pool creation, liquidity seeding and launch protection through the
pool manager contract
"""

import logging
from typing import Optional

from eth_utils import to_checksum_address

from launchpad.errors import ConfigError, ErrorKind, ProvisionError
from launchpad.models import BinDistribution
from launchpad.services.base import PoolResult, ProvisionReceipt
from launchpad.services.chain import ChainClient, TransactionError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

POOL_MANAGER_ABI = [
    {
        "inputs": [
            {"name": "baseToken", "type": "address"},
            {"name": "quoteToken", "type": "address"},
            {"name": "binStep", "type": "uint16"},
            {"name": "baseFeeBps", "type": "uint16"},
            {"name": "activeId", "type": "int32"}
        ],
        "name": "createPool",
        "outputs": [{"name": "pool", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "baseToken", "type": "address"},
            {"name": "quoteToken", "type": "address"},
            {"name": "binStep", "type": "uint16"}
        ],
        "name": "getPool",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        # quoteAmounts are base-token denominated; the manager prices them at each bin
        "inputs": [
            {"name": "pool", "type": "address"},
            {"name": "binIds", "type": "int32[]"},
            {"name": "baseAmounts", "type": "uint256[]"},
            {"name": "quoteAmounts", "type": "uint256[]"}
        ],
        "name": "seedLiquidity",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [{"name": "pool", "type": "address"}],
        "name": "poolLiquidity",
        "outputs": [
            {"name": "baseReserve", "type": "uint256"},
            {"name": "quoteReserve", "type": "uint256"}
        ],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "pool", "type": "address"},
            {"name": "delaySeconds", "type": "uint64"},
            {"name": "maxBuyPerTx", "type": "uint256"}
        ],
        "name": "activateProtection",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


def _provision_error(error: TransactionError) -> ProvisionError:
    # The orchestrator reconciles pool writes before retrying, so an unconfirmed
    # transaction is handled like a transient failure here
    kind = ErrorKind.TRANSIENT if error.kind is ErrorKind.AMBIGUOUS else error.kind
    return ProvisionError(str(error.args[0]), kind, tx_hash=error.tx_hash)


class ContractPoolProvisioner:
    """Talks to the pool manager contract from the launch operator account"""

    def __init__(self, chain: ChainClient, manager_address: str):
        if not manager_address:
            raise ConfigError("POOL_MANAGER_ADDRESS is required for pool provisioning")
        self.chain = chain
        self.manager_address = to_checksum_address(manager_address)
        self.manager = chain.contract(self.manager_address, POOL_MANAGER_ABI)
        self.logger = logging.getLogger('launchpad')

    @classmethod
    def from_config(cls, chain: ChainClient, config) -> 'ContractPoolProvisioner':
        return cls(chain, config.pool_manager_address)

    async def _read(self, function_call, what: str):
        try:
            return await self.chain.call(function_call.call)
        except Exception as e:
            raise ProvisionError(f"Could not read {what}: {e}", ErrorKind.TRANSIENT) from e

    async def _write(self, function_call, description: str) -> str:
        try:
            tx_hash, _ = await self.chain.send_transaction(function_call, description)
        except TransactionError as e:
            raise _provision_error(e) from e
        return tx_hash

    async def find_pool(self, base_mint: str, quote_mint: str, step_bps: int) -> Optional[PoolResult]:
        pool = await self._read(
            self.manager.functions.getPool(to_checksum_address(base_mint), to_checksum_address(quote_mint), step_bps),
            "pool address")
        if not pool or pool == ZERO_ADDRESS:
            return None
        return PoolResult(pool_address=to_checksum_address(pool))

    async def create_pool(self, base_mint: str, quote_mint: str, step_bps: int, base_fee_bps: int,
                          active_bin: int) -> PoolResult:
        function_call = self.manager.functions.createPool(
            to_checksum_address(base_mint),
            to_checksum_address(quote_mint),
            step_bps,
            base_fee_bps,
            active_bin,
        )
        tx_hash = await self._write(function_call, f"Pool creation (bin {active_bin}, step {step_bps})")

        found = await self.find_pool(base_mint, quote_mint, step_bps)
        if found is None:
            raise ProvisionError(f"Pool creation {tx_hash} confirmed but no pool is registered",
                                 ErrorKind.REJECTED, tx_hash=tx_hash)
        return PoolResult(pool_address=found.pool_address, receipt=tx_hash)

    async def seed_liquidity(self, pool_address: str, distribution: BinDistribution) -> ProvisionReceipt:
        function_call = self.manager.functions.seedLiquidity(
            to_checksum_address(pool_address),
            distribution.bin_ids,
            [b.base_amount for b in distribution.bins],
            [b.quote_amount for b in distribution.bins],
        )
        tx_hash = await self._write(function_call, f"Liquidity seeding of {pool_address}")
        return ProvisionReceipt(receipt=tx_hash)

    async def has_liquidity(self, pool_address: str) -> bool:
        base_reserve, quote_reserve = await self._read(
            self.manager.functions.poolLiquidity(to_checksum_address(pool_address)), "pool liquidity")
        return base_reserve > 0 or quote_reserve > 0

    async def activate_protection(self, pool_address: str, delay_seconds: int,
                                  max_buy_per_tx: int) -> ProvisionReceipt:
        function_call = self.manager.functions.activateProtection(
            to_checksum_address(pool_address), delay_seconds, max_buy_per_tx)
        tx_hash = await self._write(function_call, f"Launch protection on {pool_address}")
        return ProvisionReceipt(receipt=tx_hash)
