"""
Shared fixtures and in-memory collaborators for launch tests
"""

from decimal import Decimal

import pytest
from eth_utils import to_checksum_address
from web3 import Web3

from launchpad.config import LaunchConfig, RetryPolicy
from launchpad.database import LaunchDatabase
from launchpad.errors import ErrorKind, MintError, ProvisionError
from launchpad.models import LaunchRequest
from launchpad.orchestrator import LaunchOrchestrator
from launchpad.services.base import MintResult, PoolResult, ProvisionReceipt, PublishResult

CREATOR = "0x52908400098527886E0F7030069857D2E4169EE7"
PNG_LOGO = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64
FACTORY = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
MANAGER = "0xAb8483F64d9C6d1EcF9b849Ae677dD3315835cb2"
OPERATOR = "0x4B20993Bc481177ec7E8f571ceCaE8A9e22C02db"
TX_HASH = "0x" + "ab" * 32


class FakePublisher:
    def __init__(self, failures=(), on_publish=None):
        self.failures = list(failures)
        self.on_publish = on_publish
        self.calls = 0
        self.attributes = None

    async def publish(self, content, content_type, attributes):
        self.calls += 1
        self.attributes = attributes
        if self.on_publish:
            self.on_publish()
        if self.failures:
            raise self.failures.pop(0)
        return PublishResult(locator=f"https://ipfs.io/ipfs/QmMeta{self.calls}", content_hash=f"QmMeta{self.calls}")


class FakeMinter:
    """Ledger stand-in; an ambiguous failure may still land the token, as may a
    transient one with ``transient_lands``"""

    def __init__(self, failures=(), ambiguous_lands=True, transient_lands=False):
        self.failures = list(failures)
        self.ambiguous_lands = ambiguous_lands
        self.transient_lands = transient_lands
        self.existing = set()
        self.mint_calls = 0
        self.find_calls = 0
        self.minted = []

    def predict_address(self, salt):
        return to_checksum_address('0x' + salt[-40:])

    async def mint(self, name, symbol, metadata_locator, creator_address, creator_amount,
                   liquidity_amount, decimals, salt):
        self.mint_calls += 1
        address = self.predict_address(salt)
        if self.failures:
            error = self.failures.pop(0)
            if (error.kind is ErrorKind.AMBIGUOUS and self.ambiguous_lands) or \
                    (error.kind is ErrorKind.TRANSIENT and self.transient_lands):
                self.existing.add(address)
            raise error
        if address in self.existing:
            raise MintError("execution reverted: token exists", ErrorKind.REJECTED)

        self.existing.add(address)
        self.minted.append({
            'name': name,
            'symbol': symbol,
            'metadata_locator': metadata_locator,
            'creator_address': creator_address,
            'creator_amount': creator_amount,
            'liquidity_amount': liquidity_amount,
            'decimals': decimals,
        })
        return MintResult(mint_address=address, mint_receipt=f"0xmint{self.mint_calls}")

    async def find_mint(self, mint_address):
        self.find_calls += 1
        if mint_address in self.existing:
            return MintResult(mint_address=mint_address, mint_receipt=None)
        return None


class FakeProvisioner:
    """Pool manager stand-in; ``failures`` maps a method name to errors raised in order"""

    def __init__(self, failures=None, failed_writes_land=False):
        self.failures = {name: list(errors) for name, errors in (failures or {}).items()}
        self.failed_writes_land = failed_writes_land
        self.calls = {'create_pool': 0, 'find_pool': 0, 'seed_liquidity': 0,
                      'has_liquidity': 0, 'activate_protection': 0}
        self.pools = {}
        self.liquidity = {}
        self.active_bins = []
        self.protection = None

    def _maybe_fail(self, name, apply):
        errors = self.failures.get(name)
        if errors:
            error = errors.pop(0)
            if self.failed_writes_land:
                apply()
            raise error
        apply()

    async def create_pool(self, base_mint, quote_mint, step_bps, base_fee_bps, active_bin):
        self.calls['create_pool'] += 1
        self.active_bins.append(active_bin)
        key = (base_mint, quote_mint, step_bps)
        address = to_checksum_address('0x' + f"{len(self.pools) + 1:040x}")

        def apply():
            self.pools.setdefault(key, address)

        self._maybe_fail('create_pool', apply)
        return PoolResult(pool_address=self.pools[key], receipt=f"0xpool{self.calls['create_pool']}")

    async def find_pool(self, base_mint, quote_mint, step_bps):
        self.calls['find_pool'] += 1
        pool = self.pools.get((base_mint, quote_mint, step_bps))
        return PoolResult(pool_address=pool) if pool else None

    async def seed_liquidity(self, pool_address, distribution):
        self.calls['seed_liquidity'] += 1

        def apply():
            self.liquidity[pool_address] = self.liquidity.get(pool_address, 0) + distribution.total

        self._maybe_fail('seed_liquidity', apply)
        return ProvisionReceipt(receipt=f"0xseed{self.calls['seed_liquidity']}")

    async def has_liquidity(self, pool_address):
        self.calls['has_liquidity'] += 1
        return self.liquidity.get(pool_address, 0) > 0

    async def activate_protection(self, pool_address, delay_seconds, max_buy_per_tx):
        self.calls['activate_protection'] += 1
        errors = self.failures.get('activate_protection')
        if errors:
            raise errors.pop(0)
        self.protection = (pool_address, delay_seconds, max_buy_per_tx)
        return ProvisionReceipt(receipt="0xprotect")


class StubChain:
    """Chain client stand-in: records writes and answers reads from a queue"""

    def __init__(self, receipt=None, error=None, reads=()):
        self.w3 = Web3()
        self.address = OPERATOR
        self.receipt = receipt
        self.error = error
        self.reads = list(reads)
        self.sent = []

    def contract(self, address, abi):
        return self.w3.eth.contract(address=address, abi=abi)

    async def send_transaction(self, function_call, description):
        self.sent.append((function_call.fn_name, function_call.args))
        if self.error:
            raise self.error
        return TX_HASH, self.receipt

    async def call(self, fn, *args):
        result = self.reads.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def transient(message="connection reset", cls=ProvisionError):
    return cls(message, ErrorKind.TRANSIENT)


def make_request(**overrides):
    fields = dict(
        token_name="Meme Coin",
        token_symbol="MEME",
        creator_address=CREATOR,
        tier="basic",
        logo=PNG_LOGO,
        logo_content_type="image/png",
        initial_price=Decimal("0.0001"),
        description="A coin for memes",
        website="https://meme.example",
    )
    fields.update(overrides)
    return LaunchRequest(**fields)


@pytest.fixture
def config(tmp_path):
    return LaunchConfig(
        db_path=str(tmp_path / "launches.db"),
        retry=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0),
    )


@pytest.fixture
def db(config):
    return LaunchDatabase(config.db_path)


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def minter():
    return FakeMinter()


@pytest.fixture
def provisioner():
    return FakeProvisioner()


@pytest.fixture
def sleeps():
    return Sleeps()


@pytest.fixture
def orchestrator(config, db, publisher, minter, provisioner, sleeps):
    return LaunchOrchestrator(config, db, publisher, minter, provisioner, sleep=sleeps, owner_id="test-driver")
