"""
Web3 connection, EIP-1559 fee selection and transaction sending shared by
the token minter and the pool provisioner
"""

import asyncio
import logging
import time
from functools import partial
from typing import Optional, Tuple

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from launchpad.errors import CollaboratorError, ErrorKind

NONCE_ERRORS = ('nonce too low', 'already known', 'replacement transaction underpriced')
REJECTED_ERRORS = ('insufficient funds', 'execution reverted', 'exceeds block gas limit', 'intrinsic gas too low')


class TransactionError(CollaboratorError):
    """A chain write that did not confirm successfully"""


def classify_send_error(error: Exception) -> ErrorKind:
    """Kind of a failure raised before a transaction was broadcast"""
    if isinstance(error, ContractLogicError):
        return ErrorKind.REJECTED
    if isinstance(error, (requests.ConnectionError, requests.Timeout, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    message = str(error).lower()
    if any(marker in message for marker in REJECTED_ERRORS):
        return ErrorKind.REJECTED
    return ErrorKind.TRANSIENT


class ChainClient:
    """Signs and sends transactions from the launch operator account"""

    def __init__(self, w3: Web3, account, gas_limit: int = 6_000_000,
                 min_priority_fee_gwei: float = 0.1, max_priority_fee_gwei: float = 2.0,
                 receipt_timeout: int = 300):
        self.w3 = w3
        self.account = account
        self.gas_limit = gas_limit
        self.min_priority_fee_gwei = min_priority_fee_gwei
        self.max_priority_fee_gwei = max_priority_fee_gwei
        self.receipt_timeout = receipt_timeout
        self.logger = logging.getLogger('launchpad')

        # Nonce management for concurrent launches
        self.nonce_lock = asyncio.Lock()
        self.last_nonce = None
        self.last_nonce_time = 0

    @classmethod
    def from_config(cls, config) -> 'ChainClient':
        w3 = Web3(Web3.HTTPProvider(config.rpc_url))
        if not w3.is_connected():
            raise ConnectionError(f"Failed to connect to RPC node at {config.rpc_url}")

        account = Account.from_key(config.private_key)
        return cls(
            w3,
            account,
            gas_limit=config.gas_limit,
            min_priority_fee_gwei=config.min_priority_fee_gwei,
            max_priority_fee_gwei=config.max_priority_fee_gwei,
            receipt_timeout=config.receipt_timeout,
        )

    @property
    def address(self) -> str:
        return self.account.address

    def contract(self, address: str, abi):
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

    async def call(self, fn, *args):
        """Run a blocking web3 call off the event loop"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    def get_optimal_gas_parameters(self) -> Tuple[int, int, float]:
        """Pick EIP-1559 fees from recent block congestion

        Returns:
            Tuple of (max_priority_fee_wei, max_fee_per_gas_wei, base_fee_multiplier)
        """
        latest_block = self.w3.eth.get_block('latest')
        base_fee = latest_block['baseFeePerGas']

        gas_used_ratios = []
        for i in range(5):
            block = self.w3.eth.get_block(latest_block['number'] - i)
            if block and block['gasLimit']:
                gas_used_ratios.append(block['gasUsed'] / block['gasLimit'])

        avg_gas_used_ratio = sum(gas_used_ratios) / len(gas_used_ratios) if gas_used_ratios else 0.5

        if avg_gas_used_ratio < 0.5:
            max_priority_fee = self.w3.to_wei(self.min_priority_fee_gwei, 'gwei')
            base_multiplier = 1.08
        elif avg_gas_used_ratio < 0.8:
            max_priority_fee = self.w3.to_wei(
                min(0.5, self.max_priority_fee_gwei), 'gwei')
            base_multiplier = 1.1
        else:
            max_priority_fee = self.w3.to_wei(self.max_priority_fee_gwei, 'gwei')
            base_multiplier = 1.2

        max_fee_per_gas = int(base_fee * base_multiplier) + max_priority_fee

        self.logger.debug(f"Gas: congestion={avg_gas_used_ratio:.2f}, "
                          f"base_fee={base_fee / 1e9:.2f} gwei, "
                          f"priority={max_priority_fee / 1e9:.2f} gwei, "
                          f"multiplier={base_multiplier}")

        return max_priority_fee, max_fee_per_gas, base_multiplier

    async def _next_nonce(self, refresh: bool = False) -> int:
        async with self.nonce_lock:
            current_time = time.time()
            if not refresh and self.last_nonce is not None and (current_time - self.last_nonce_time) < 5:
                nonce = self.last_nonce + 1
            else:
                nonce = await self.call(self.w3.eth.get_transaction_count, self.address, 'pending')
            self.last_nonce = nonce
            self.last_nonce_time = current_time
            return nonce

    async def _build_transaction(self, function_call, nonce: int):
        try:
            gas_estimate = await self.call(function_call.estimate_gas, {'from': self.address, 'value': 0})
            gas_limit = int(gas_estimate * 1.1)
        except Exception as e:
            if classify_send_error(e) is ErrorKind.REJECTED:
                raise
            self.logger.warning(f"Gas estimation failed, using default of {self.gas_limit:,}: {e}")
            gas_limit = self.gas_limit

        max_priority_fee, max_fee_per_gas, _ = await self.call(self.get_optimal_gas_parameters)
        chain_id = await self.call(lambda: self.w3.eth.chain_id)

        return function_call.build_transaction({
            'from': self.address,
            'value': 0,
            'gas': gas_limit,
            'maxFeePerGas': max_fee_per_gas,
            'maxPriorityFeePerGas': max_priority_fee,
            'nonce': nonce,
            'chainId': chain_id,
            'type': 2,
        })

    async def send_transaction(self, function_call, description: str, max_nonce_retries: int = 3):
        """Sign, send and wait for ``function_call``.

        Returns (tx_hash_hex, receipt). Raises TransactionError: TRANSIENT or
        REJECTED when nothing was broadcast, AMBIGUOUS when the transaction
        may have gone out (the send call lost its connection, or no receipt
        arrived in time), REJECTED when it reverted.
        """
        tx_hash_hex: Optional[str] = None
        refresh = False

        for retry_count in range(max_nonce_retries):
            signed_hash: Optional[str] = None
            try:
                nonce = await self._next_nonce(refresh=refresh)
                tx = await self._build_transaction(function_call, nonce)
                signed_tx = self.account.sign_transaction(tx)
                raw = getattr(signed_tx, 'raw_transaction', None) or signed_tx.rawTransaction
                signed_hash = Web3.to_hex(signed_tx.hash)
                tx_hash = await self.call(self.w3.eth.send_raw_transaction, raw)
                tx_hash_hex = Web3.to_hex(tx_hash)
                break
            except (requests.ConnectionError, requests.Timeout, asyncio.TimeoutError, ConnectionError) as e:
                if signed_hash is None:
                    raise TransactionError(f"{description} failed before broadcast: {e}",
                                           ErrorKind.TRANSIENT) from e
                # The node may have accepted the transaction before the connection dropped
                raise TransactionError(f"Lost connection sending {description}: {e}",
                                       ErrorKind.AMBIGUOUS, tx_hash=signed_hash) from e
            except Exception as e:
                message = str(e).lower()
                if any(marker in message for marker in NONCE_ERRORS) and retry_count + 1 < max_nonce_retries:
                    self.logger.warning(f"Nonce conflict sending {description}, retrying "
                                        f"({retry_count + 1}/{max_nonce_retries})")
                    refresh = True
                    await asyncio.sleep(1)
                    continue
                kind = classify_send_error(e)
                raise TransactionError(f"{description} failed before broadcast: {e}", kind) from e

        self.logger.info(f"{description} sent: {tx_hash_hex}")

        try:
            receipt = await self.call(self.w3.eth.wait_for_transaction_receipt, tx_hash_hex,
                                      self.receipt_timeout)
        except TimeExhausted as e:
            raise TransactionError(f"{description} not confirmed after {self.receipt_timeout}s",
                                   ErrorKind.AMBIGUOUS, tx_hash=tx_hash_hex) from e
        except (requests.ConnectionError, requests.Timeout, ConnectionError) as e:
            raise TransactionError(f"Lost connection waiting for {description}: {e}",
                                   ErrorKind.AMBIGUOUS, tx_hash=tx_hash_hex) from e

        if receipt['status'] != 1:
            raise TransactionError(f"{description} reverted", ErrorKind.REJECTED, tx_hash=tx_hash_hex)

        self.logger.info(f"{description} confirmed in block {receipt['blockNumber']}")
        return tx_hash_hex, receipt
