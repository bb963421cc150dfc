"""
Token minting through a CREATE2 token factory
"""

import logging
from typing import Optional

from eth_hash.auto import keccak
from eth_utils import to_checksum_address
from web3 import Web3

from launchpad.errors import ConfigError, ErrorKind, MintError
from launchpad.services.base import MintResult
from launchpad.services.chain import ChainClient, TransactionError

TRANSFER_TOPIC = '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'
ZERO_TOPIC = '0x' + '0' * 64

FACTORY_ABI = [
    {
        "inputs": [
            {"name": "name", "type": "string"},
            {"name": "symbol", "type": "string"},
            {"name": "metadataURI", "type": "string"},
            {"name": "creator", "type": "address"},
            {"name": "creatorAmount", "type": "uint256"},
            {"name": "liquidityRecipient", "type": "address"},
            {"name": "liquidityAmount", "type": "uint256"},
            {"name": "decimals", "type": "uint8"},
            {"name": "salt", "type": "bytes32"}
        ],
        "name": "createToken",
        "outputs": [{"name": "token", "type": "address"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith('0x') else value


def calculate_create2_address(deployer: str, salt: str, init_code_hash: str) -> str:
    """CREATE2 address: last 20 bytes of keccak256(0xff + deployer + salt + init_code_hash)"""
    data = bytes.fromhex("ff" + _strip_0x(deployer) + _strip_0x(salt) + _strip_0x(init_code_hash))
    return to_checksum_address("0x" + keccak(data)[-20:].hex())


def extract_minted_token(receipt) -> Optional[str]:
    """Address of the first token that emitted a Transfer from the zero address"""
    for log in receipt['logs']:
        topics = log['topics']
        if len(topics) >= 2 and Web3.to_hex(topics[0]) == TRANSFER_TOPIC and Web3.to_hex(topics[1]) == ZERO_TOPIC:
            return to_checksum_address(log['address'])
    return None


class FactoryTokenMinter:
    """Mints launch tokens with a deterministic (salted) address"""

    def __init__(self, chain: ChainClient, factory_address: str, init_code_hash: str,
                 liquidity_recipient: Optional[str] = None):
        if not factory_address or not init_code_hash:
            raise ConfigError("TOKEN_FACTORY_ADDRESS and TOKEN_INIT_CODE_HASH are required for minting")
        self.chain = chain
        self.factory_address = to_checksum_address(factory_address)
        self.init_code_hash = init_code_hash
        self.liquidity_recipient = to_checksum_address(liquidity_recipient or chain.address)
        self.factory = chain.contract(self.factory_address, FACTORY_ABI)
        self.logger = logging.getLogger('launchpad')

    @classmethod
    def from_config(cls, chain: ChainClient, config) -> 'FactoryTokenMinter':
        return cls(chain, config.token_factory_address, config.token_init_code_hash,
                   config.liquidity_recipient or config.pool_manager_address)

    def predict_address(self, salt: str) -> str:
        return calculate_create2_address(self.factory_address, salt, self.init_code_hash)

    async def mint(self, name: str, symbol: str, metadata_locator: str, creator_address: str,
                   creator_amount: int, liquidity_amount: int, decimals: int, salt: str) -> MintResult:
        predicted = self.predict_address(salt)
        function_call = self.factory.functions.createToken(
            name,
            symbol,
            metadata_locator,
            to_checksum_address(creator_address),
            creator_amount,
            self.liquidity_recipient,
            liquidity_amount,
            decimals,
            bytes.fromhex(_strip_0x(salt)),
        )

        try:
            tx_hash, receipt = await self.chain.send_transaction(function_call, f"Mint of {symbol}")
        except TransactionError as e:
            raise MintError(str(e.args[0]), e.kind, tx_hash=e.tx_hash) from e

        token_address = extract_minted_token(receipt) or predicted
        if token_address.lower() != predicted.lower():
            self.logger.warning(f"Minted address {token_address} differs from predicted {predicted}")

        return MintResult(mint_address=token_address, mint_receipt=tx_hash)

    async def find_mint(self, mint_address: str) -> Optional[MintResult]:
        try:
            code = await self.chain.call(self.chain.w3.eth.get_code, to_checksum_address(mint_address))
        except Exception as e:
            raise MintError(f"Could not check mint {mint_address}: {e}", ErrorKind.TRANSIENT) from e

        if len(code) == 0:
            return None
        return MintResult(mint_address=to_checksum_address(mint_address), mint_receipt=None)
