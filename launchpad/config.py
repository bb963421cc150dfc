"""
Launch configuration: environment settings and the static pool tier table
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from launchpad.errors import ConfigError
from launchpad.models import PoolTierConfig

# Bump whenever a tier value changes; launch records keep the version they ran with
TIERS_VERSION = "2024.1"

TIER_CONFIGS: Dict[str, PoolTierConfig] = {
    'basic': PoolTierConfig(
        name='basic',
        step_bps=100,         # 1% bin step
        base_fee_bps=25,      # 0.25% base fee
        activation_delay=0,   # Immediate activation
        anti_sniper=False,
        launch_fee='0.02',
        version=TIERS_VERSION,
    ),
    'premium': PoolTierConfig(
        name='premium',
        step_bps=50,
        base_fee_bps=25,
        activation_delay=300,  # 5 minute delay for anti-sniper setup
        anti_sniper=True,
        launch_fee='0.1',
        version=TIERS_VERSION,
    ),
}

WETH_ADDRESS = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"

ALLOWED_LOGO_TYPES = ('image/jpeg', 'image/png', 'image/gif', 'image/webp')

CHAIN_VARS = ['PRIVATE_KEY', 'RPC_URL', 'TOKEN_FACTORY_ADDRESS', 'POOL_MANAGER_ADDRESS']


@dataclass
class RetryPolicy:
    """Bounded exponential backoff used inside a single step"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)"""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


@dataclass
class LaunchConfig:
    # Token defaults
    total_supply: int = 1_000_000_000
    decimals: int = 9
    creator_share: Fraction = Fraction(4, 5)
    default_initial_price: Decimal = Decimal('0.0001')
    min_initial_price: Decimal = Decimal('0.00001')
    max_initial_price: Decimal = Decimal('1')

    # Pool
    quote_token_address: str = WETH_ADDRESS
    curve_radius: int = 10
    curve_decay: float = 0.1
    max_buy_per_tx: int = 1000  # whole tokens per transaction while protection is on
    tiers: Dict[str, PoolTierConfig] = field(default_factory=lambda: dict(TIER_CONFIGS))

    # Orchestration
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    lease_ttl: int = 900
    db_path: str = 'launches.db'

    # Uploads
    max_logo_size: int = 5 * 1024 * 1024
    allowed_logo_types: Tuple[str, ...] = ALLOWED_LOGO_TYPES
    ipfs_gateway: str = 'https://ipfs.io/ipfs/'
    pinata_api_key: Optional[str] = None
    pinata_secret_key: Optional[str] = None
    web3_storage_token: Optional[str] = None

    # Chain
    private_key: Optional[str] = field(default=None, repr=False)
    rpc_url: Optional[str] = None
    token_factory_address: Optional[str] = None
    token_init_code_hash: Optional[str] = None
    pool_manager_address: Optional[str] = None
    liquidity_recipient: Optional[str] = None
    gas_limit: int = 6_000_000
    min_priority_fee_gwei: float = 0.1
    max_priority_fee_gwei: float = 2.0
    receipt_timeout: int = 300

    def tier(self, name: str) -> PoolTierConfig:
        try:
            return self.tiers[name]
        except KeyError:
            raise ConfigError(f"Unknown tier: {name}")

    def validate(self) -> None:
        """Reject settings the launch flow cannot run with"""
        if self.creator_share <= 0 or self.creator_share >= 1:
            raise ConfigError(f"CREATOR_SHARE must be > 0 and < 1 (got {self.creator_share}); "
                              "a share of 1 leaves nothing for liquidity")
        if self.total_supply <= 0:
            raise ConfigError("TOKEN_SUPPLY must be > 0")
        if not 0 <= self.decimals <= 18:
            raise ConfigError("TOKEN_DECIMALS must be between 0 and 18")
        if self.curve_radius <= 0:
            raise ConfigError("CURVE_RADIUS must be > 0")
        if self.curve_decay <= 0:
            raise ConfigError("CURVE_DECAY must be > 0")
        if self.retry.max_attempts < 1:
            raise ConfigError("STEP_MAX_ATTEMPTS must be >= 1")
        if self.min_initial_price <= 0 or self.min_initial_price > self.max_initial_price:
            raise ConfigError("Initial price range is empty")
        if self.max_buy_per_tx <= 0:
            raise ConfigError("MAX_BUY_PER_TX must be > 0")
        # The lease is renewed before every attempt, so it must outlive one receipt wait plus one backoff
        longest_attempt = self.receipt_timeout + self.retry.delay(self.retry.max_attempts)
        if self.lease_ttl <= longest_attempt:
            raise ConfigError(f"LEASE_TTL_SECONDS must be > RECEIPT_TIMEOUT plus the longest retry delay "
                              f"({longest_attempt:g}s), got {self.lease_ttl}")

    def missing_chain_settings(self):
        values = {
            'PRIVATE_KEY': self.private_key,
            'RPC_URL': self.rpc_url,
            'TOKEN_FACTORY_ADDRESS': self.token_factory_address,
            'POOL_MANAGER_ADDRESS': self.pool_manager_address,
        }
        return [name for name in CHAIN_VARS if not values[name]]

    @classmethod
    def from_env(cls, require_chain: bool = True) -> 'LaunchConfig':
        """Load configuration from environment (and .env)"""
        load_dotenv()

        try:
            config = cls(
                total_supply=int(os.getenv('TOKEN_SUPPLY', '1000000000')),
                decimals=int(os.getenv('TOKEN_DECIMALS', '9')),
                creator_share=Fraction(os.getenv('CREATOR_SHARE', '0.8')),
                default_initial_price=Decimal(os.getenv('DEFAULT_INITIAL_PRICE', '0.0001')),
                quote_token_address=os.getenv('QUOTE_TOKEN_ADDRESS', WETH_ADDRESS),
                curve_radius=int(os.getenv('CURVE_RADIUS', '10')),
                curve_decay=float(os.getenv('CURVE_DECAY', '0.1')),
                max_buy_per_tx=int(os.getenv('MAX_BUY_PER_TX', '1000')),
                retry=RetryPolicy(
                    max_attempts=int(os.getenv('STEP_MAX_ATTEMPTS', '3')),
                    base_delay=float(os.getenv('RETRY_BASE_DELAY', '1.0')),
                    max_delay=float(os.getenv('RETRY_MAX_DELAY', '30')),
                ),
                lease_ttl=int(os.getenv('LEASE_TTL_SECONDS', '900')),
                db_path=os.getenv('LAUNCH_DB_PATH', 'launches.db'),
                ipfs_gateway=os.getenv('IPFS_GATEWAY', 'https://ipfs.io/ipfs/'),
                pinata_api_key=os.getenv('PINATA_API_KEY'),
                pinata_secret_key=os.getenv('PINATA_SECRET_KEY'),
                web3_storage_token=os.getenv('WEB3_STORAGE_TOKEN'),
                private_key=os.getenv('PRIVATE_KEY'),
                rpc_url=os.getenv('RPC_URL'),
                token_factory_address=os.getenv('TOKEN_FACTORY_ADDRESS'),
                token_init_code_hash=os.getenv('TOKEN_INIT_CODE_HASH'),
                pool_manager_address=os.getenv('POOL_MANAGER_ADDRESS'),
                liquidity_recipient=os.getenv('LIQUIDITY_RECIPIENT'),
                gas_limit=int(os.getenv('GAS_LIMIT', '6000000')),
                min_priority_fee_gwei=float(os.getenv('MIN_PRIORITY_FEE_GWEI', '0.1')),
                max_priority_fee_gwei=float(os.getenv('MAX_PRIORITY_FEE_GWEI', '2.0')),
                receipt_timeout=int(os.getenv('RECEIPT_TIMEOUT', '300')),
            )
        except (ValueError, ArithmeticError) as e:
            raise ConfigError(f"Invalid configuration value: {e}")

        if require_chain:
            missing = config.missing_chain_settings()
            if missing:
                raise ConfigError(f"Missing required environment variables: {missing}")

        config.validate()
        return config
