import re
from types import SimpleNamespace

import pytest
from solders.pubkey import Pubkey

from paychannel.core.chains import ChainType, chain_spec
from paychannel.core.errors import ConfigurationError, UnsupportedChainError
from paychannel.keys.derivation import KeyDerivationEngine
from paychannel.keys.seed import MasterSeed, load_master_seed

# the well-known all-"abandon" BIP39 test mnemonic
TEST_MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"


def test_same_seed_same_addresses(master_seed):
    first = KeyDerivationEngine(master_seed)
    second = KeyDerivationEngine(MasterSeed(master_seed.value))
    for chain in ChainType:
        for index in (0, 1, 7):
            a = first.derive(chain, index)
            b = second.derive(chain, index)
            assert a.address == b.address
            assert a.private_key == b.private_key
            assert a.derivation_path == b.derivation_path


def test_distinct_indices_give_distinct_addresses(derivation):
    for chain in ChainType:
        addresses = {derivation.derive(chain, i).address for i in range(5)}
        assert len(addresses) == 5


def test_known_ethereum_vector():
    seed = load_master_seed(SimpleNamespace(CRYPTO_MASTER_SEED=None, CRYPTO_MASTER_MNEMONIC=TEST_MNEMONIC))
    derived = KeyDerivationEngine(seed).derive("ETH", 0)
    assert derived.address == "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
    assert derived.derivation_path == "m/44'/60'/0'/0/0"


def test_bitcoin_is_native_segwit(derivation):
    derived = derivation.derive(ChainType.BTC, 0)
    assert derived.address.startswith("bc1q")
    assert len(derived.address) == 42
    assert derived.address_type == "P2WPKH"
    assert derived.derivation_path == "m/44'/0'/0'/0/0"
    assert len(bytes.fromhex(derived.public_key)) == 33


def test_dash_is_legacy_p2pkh(derivation):
    derived = derivation.derive("dash", 3)
    assert derived.address.startswith("X")
    assert derived.address_type == "P2PKH"
    assert derived.derivation_path == "m/44'/5'/0'/0/3"


def test_account_chains_share_keys(derivation):
    eth = derivation.derive(ChainType.ETH, 2)
    matic = derivation.derive(ChainType.MATIC, 2)
    bnb = derivation.derive(ChainType.BNB, 2)
    assert eth.address == matic.address == bnb.address
    assert re.fullmatch(r"0x[0-9a-fA-F]{40}", eth.address)
    assert eth.public_key.startswith("0x04")
    assert len(eth.public_key) == 2 + 130


def test_solana_address_is_ed25519_pubkey(derivation):
    derived = derivation.derive(ChainType.SOL, 0)
    assert str(Pubkey.from_string(derived.address)) == derived.address
    assert derived.public_key == derived.address
    # 32-byte secret + 32-byte public key
    assert len(bytes.fromhex(derived.private_key)) == 64
    assert derived.derivation_path == "m/44'/501'/0'/0/0"


def test_monero_is_marked_placeholder(derivation):
    derived = derivation.derive(ChainType.XMR, 0)
    assert derived.address_type == "XMR_PLACEHOLDER"
    assert derived.address.startswith("4")
    assert derived.view_key is not None
    assert not chain_spec(ChainType.XMR).priced


@pytest.mark.parametrize("index", [-1, 2 ** 31, True, "0", 1.5])
def test_invalid_index_rejected(derivation, index):
    with pytest.raises(ConfigurationError):
        derivation.derive(ChainType.BTC, index)


def test_unknown_chain_rejected(derivation):
    with pytest.raises(UnsupportedChainError):
        derivation.derive("DOGE", 0)


def test_private_key_not_in_repr(derivation):
    derived = derivation.derive(ChainType.ETH, 0)
    assert derived.private_key not in repr(derived)
