from decimal import Decimal
from fractions import Fraction

import pytest

from launchpad.config import CHAIN_VARS, LaunchConfig, RetryPolicy, TIER_CONFIGS, TIERS_VERSION
from launchpad.errors import ConfigError

ENV_VARS = CHAIN_VARS + [
    'TOKEN_SUPPLY', 'TOKEN_DECIMALS', 'CREATOR_SHARE', 'DEFAULT_INITIAL_PRICE', 'CURVE_RADIUS',
    'CURVE_DECAY', 'MAX_BUY_PER_TX', 'STEP_MAX_ATTEMPTS', 'RETRY_BASE_DELAY', 'RETRY_MAX_DELAY',
    'LAUNCH_DB_PATH', 'TOKEN_INIT_CODE_HASH', 'LEASE_TTL_SECONDS', 'RECEIPT_TIMEOUT',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr('launchpad.config.load_dotenv', lambda: None)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_chain():
    config = LaunchConfig.from_env(require_chain=False)

    assert config.total_supply == 1_000_000_000
    assert config.decimals == 9
    assert config.creator_share == Fraction(4, 5)
    assert config.default_initial_price == Decimal('0.0001')
    assert config.curve_radius == 10
    assert config.curve_decay == 0.1
    assert config.retry == RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0)
    assert config.tiers == TIER_CONFIGS


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('TOKEN_SUPPLY', '21000000')
    monkeypatch.setenv('TOKEN_DECIMALS', '6')
    monkeypatch.setenv('CREATOR_SHARE', '0.5')
    monkeypatch.setenv('CURVE_RADIUS', '20')
    monkeypatch.setenv('STEP_MAX_ATTEMPTS', '5')
    monkeypatch.setenv('LAUNCH_DB_PATH', 'other.db')

    config = LaunchConfig.from_env(require_chain=False)

    assert config.total_supply == 21_000_000
    assert config.decimals == 6
    assert config.creator_share == Fraction(1, 2)
    assert config.curve_radius == 20
    assert config.retry.max_attempts == 5
    assert config.db_path == 'other.db'


def test_missing_chain_settings_are_listed():
    with pytest.raises(ConfigError) as exc:
        LaunchConfig.from_env()

    for name in CHAIN_VARS:
        assert name in str(exc.value)


def test_chain_settings_loaded(monkeypatch):
    monkeypatch.setenv('PRIVATE_KEY', '0x' + '11' * 32)
    monkeypatch.setenv('RPC_URL', 'http://localhost:8545')
    monkeypatch.setenv('TOKEN_FACTORY_ADDRESS', '0x' + '22' * 20)
    monkeypatch.setenv('POOL_MANAGER_ADDRESS', '0x' + '33' * 20)

    config = LaunchConfig.from_env()

    assert config.rpc_url == 'http://localhost:8545'
    assert config.missing_chain_settings() == []
    assert '11' * 32 not in repr(config)


@pytest.mark.parametrize("name, value", [
    ('CREATOR_SHARE', '1'),
    ('CREATOR_SHARE', '0'),
    ('CREATOR_SHARE', 'most'),
    ('TOKEN_SUPPLY', 'lots'),
    ('TOKEN_DECIMALS', '19'),
    ('CURVE_RADIUS', '0'),
    ('CURVE_DECAY', '-0.1'),
    ('STEP_MAX_ATTEMPTS', '0'),
    ('LEASE_TTL_SECONDS', '300'),
])
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigError):
        LaunchConfig.from_env(require_chain=False)


def test_retry_delays_back_off_and_cap():
    policy = RetryPolicy(max_attempts=6, base_delay=1.0, max_delay=5.0)

    assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_tiers_are_versioned():
    assert TIER_CONFIGS['basic'].step_bps == 100
    assert not TIER_CONFIGS['basic'].anti_sniper
    assert TIER_CONFIGS['premium'].anti_sniper
    assert TIER_CONFIGS['premium'].activation_delay == 300
    assert all(tier.version == TIERS_VERSION for tier in TIER_CONFIGS.values())

    with pytest.raises(ConfigError):
        LaunchConfig().tier('gold')


def test_lease_must_outlive_one_attempt():
    config = LaunchConfig(receipt_timeout=300, retry=RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=30.0))

    config.lease_ttl = 316
    with pytest.raises(ConfigError) as exc:
        config.validate()
    assert 'LEASE_TTL_SECONDS' in str(exc.value)

    config.lease_ttl = 317
    config.validate()


def test_short_receipt_timeout_allows_short_lease(monkeypatch):
    monkeypatch.setenv('RECEIPT_TIMEOUT', '60')
    monkeypatch.setenv('LEASE_TTL_SECONDS', '120')

    config = LaunchConfig.from_env(require_chain=False)

    assert config.lease_ttl == 120
    assert config.receipt_timeout == 60
