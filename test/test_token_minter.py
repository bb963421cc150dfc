"""
Factory minting and CREATE2 prediction against a stubbed chain client
"""

import asyncio

import pytest
from eth_hash.auto import keccak
from web3 import Web3

from conftest import CREATOR, FACTORY, MANAGER, TX_HASH, StubChain
from launchpad.errors import ConfigError, ErrorKind, MintError
from launchpad.services.chain import TransactionError
from launchpad.services.token_minter import (
    TRANSFER_TOPIC,
    ZERO_TOPIC,
    FactoryTokenMinter,
    calculate_create2_address,
    extract_minted_token,
)

INIT_CODE_HASH = "0x" + keccak(b"\x00").hex()
SALT = "0x" + "12" * 32


def transfer_log(token, from_topic=ZERO_TOPIC):
    return {
        'address': token.lower(),
        'topics': [bytes.fromhex(TRANSFER_TOPIC[2:]), bytes.fromhex(from_topic[2:]), bytes(32)],
    }


def test_create2_matches_reference_vectors():
    assert calculate_create2_address("0x" + "00" * 20, "0x" + "00" * 32, INIT_CODE_HASH) == \
        "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"
    assert calculate_create2_address("0xdeadbeef00000000000000000000000000000000", "0x" + "00" * 32,
                                     INIT_CODE_HASH) == "0xB928f69Bb1D91Cd65274e3c79d8986362984fDA3"


def test_extract_minted_token():
    token = "0x0000000000000000000000000000000000001234"
    other = "0x000000000000000000000000000000000000dEaD"
    receipt = {'logs': [
        transfer_log(other, from_topic="0x" + "00" * 12 + "11" * 20),
        transfer_log(token),
    ]}

    assert extract_minted_token(receipt) == Web3.to_checksum_address(token)
    assert extract_minted_token({'logs': []}) is None


def test_mint_returns_predicted_address():
    chain = StubChain()
    minter = FactoryTokenMinter(chain, FACTORY, INIT_CODE_HASH, liquidity_recipient=MANAGER)
    predicted = minter.predict_address(SALT)
    chain.receipt = {'logs': [transfer_log(predicted)]}

    result = asyncio.run(minter.mint("Meme Coin", "MEME", "https://ipfs.io/ipfs/QmMeta", CREATOR,
                                     800 * 10 ** 9, 200 * 10 ** 9, 9, SALT))

    assert predicted == calculate_create2_address(FACTORY, SALT, INIT_CODE_HASH)
    assert result.mint_address == predicted
    assert result.mint_receipt == TX_HASH

    fn_name, args = chain.sent[0]
    assert fn_name == 'createToken'
    assert args[3] == CREATOR
    assert args[4] == 800 * 10 ** 9
    assert args[5] == MANAGER
    assert args[6] == 200 * 10 ** 9
    assert args[8] == bytes.fromhex("12" * 32)


@pytest.mark.parametrize("kind", [ErrorKind.TRANSIENT, ErrorKind.AMBIGUOUS, ErrorKind.REJECTED])
def test_mint_errors_keep_their_kind(kind):
    chain = StubChain(error=TransactionError("Mint of MEME failed", kind, tx_hash="0xfeed"))
    minter = FactoryTokenMinter(chain, FACTORY, INIT_CODE_HASH)

    with pytest.raises(MintError) as exc:
        asyncio.run(minter.mint("Meme Coin", "MEME", "ipfs://x", CREATOR, 1, 1, 9, SALT))

    assert exc.value.kind is kind
    assert exc.value.tx_hash == "0xfeed"


def test_find_mint_checks_deployed_code():
    minter = FactoryTokenMinter(StubChain(reads=[b"", b"\x60\x80"]), FACTORY, INIT_CODE_HASH)
    address = minter.predict_address(SALT)

    assert asyncio.run(minter.find_mint(address)) is None
    found = asyncio.run(minter.find_mint(address))
    assert found.mint_address == address
    assert found.mint_receipt is None


def test_find_mint_read_failure_is_transient():
    minter = FactoryTokenMinter(StubChain(reads=[ConnectionError("reset")]), FACTORY, INIT_CODE_HASH)

    with pytest.raises(MintError) as exc:
        asyncio.run(minter.find_mint(minter.predict_address(SALT)))
    assert exc.value.kind is ErrorKind.TRANSIENT


def test_minter_requires_factory_settings():
    with pytest.raises(ConfigError):
        FactoryTokenMinter(StubChain(), None, INIT_CODE_HASH)
    with pytest.raises(ConfigError):
        FactoryTokenMinter(StubChain(), FACTORY, None)

