"""
KeyDerivationEngine - deterministic per-index keypairs and addresses for every supported chain.

All chains hang off one BIP32 secp256k1 root built from the master seed:
- UTXO chains: m/44'/coin'/0'/0/index, native segwit (BTC) or legacy P2PKH (DASH)
- account chains (ETH, MATIC, BNB): m/44'/60'/0'/0/index, EIP-55 address; network
  metadata is only used later for chain info, never for derivation
- Solana: ed25519 keypair seeded from the first 32 bytes of the m/44'/501'/0'/0/index
  node private key
- Monero: PLACEHOLDER ONLY. The address is deterministic but not a valid Monero
  address (no spend/view keypair encoding). Never hand it to a payer.

The same (seed, chain, index) always yields the same address and keys.
"""
import hashlib
import logging
from dataclasses import dataclass, field

from bip_utils import Bip32KeyError, Bip32Slip10Secp256k1, EthAddrEncoder, P2PKHAddrEncoder, P2WPKHAddrEncoder
from solders.keypair import Keypair

from paychannel.core.chains import AddressEncoding, ChainSpec, ChainType, chain_spec
from paychannel.core.errors import ConfigurationError
from paychannel.keys.seed import MasterSeed

logger = logging.getLogger("paychannel.keys.derivation")

MAX_INDEX = 2 ** 31 - 1  # non-hardened child range


@dataclass(frozen=True)
class DerivedKey:
    chain_type: ChainType
    index: int
    address: str
    public_key: str
    private_key: str = field(repr=False)
    derivation_path: str
    address_type: str
    view_key: str | None = field(default=None, repr=False)


class KeyDerivationEngine:
    def __init__(self, master_seed: MasterSeed):
        try:
            self._root = Bip32Slip10Secp256k1.FromSeed(master_seed.value)
        except (Bip32KeyError, ValueError) as exc:
            raise ConfigurationError(f"Master seed rejected by BIP32: {exc}") from exc
        # account-level nodes per coin type (m/44'/coin'/0'/0)
        self._chain_nodes = {}
        self._encoders = {
            AddressEncoding.P2WPKH: self._derive_p2wpkh,
            AddressEncoding.P2PKH: self._derive_p2pkh,
            AddressEncoding.EOA: self._derive_eoa,
            AddressEncoding.ED25519: self._derive_ed25519,
            AddressEncoding.XMR_PLACEHOLDER: self._derive_xmr_placeholder,
        }

    def derive(self, chain_type, index: int) -> DerivedKey:
        spec = chain_spec(chain_type)
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index <= MAX_INDEX:
            raise ConfigurationError(f"Derivation index out of range: {index!r}")
        node = self._node(spec, index)
        return self._encoders[spec.encoding](spec, index, node)

    def _node(self, spec: ChainSpec, index: int):
        chain_node = self._chain_nodes.get(spec.coin_type)
        if chain_node is None:
            chain_node = self._root.DerivePath(spec.derivation_prefix.rstrip("/"))
            self._chain_nodes[spec.coin_type] = chain_node
        return chain_node.ChildKey(index)

    @staticmethod
    def _private_bytes(node) -> bytes:
        return node.PrivateKey().Raw().ToBytes()

    def _derive_p2wpkh(self, spec: ChainSpec, index: int, node) -> DerivedKey:
        public_key = node.PublicKey().RawCompressed().ToBytes()
        address = P2WPKHAddrEncoder.EncodeKey(public_key, hrp=spec.bech32_hrp, wit_ver=0)
        return DerivedKey(
            chain_type=spec.chain_type,
            index=index,
            address=address,
            public_key=public_key.hex(),
            private_key=self._private_bytes(node).hex(),
            derivation_path=spec.derivation_path(index),
            address_type=spec.encoding.value,
        )

    def _derive_p2pkh(self, spec: ChainSpec, index: int, node) -> DerivedKey:
        public_key = node.PublicKey().RawCompressed().ToBytes()
        address = P2PKHAddrEncoder.EncodeKey(public_key, net_ver=spec.p2pkh_net_ver)
        return DerivedKey(
            chain_type=spec.chain_type,
            index=index,
            address=address,
            public_key=public_key.hex(),
            private_key=self._private_bytes(node).hex(),
            derivation_path=spec.derivation_path(index),
            address_type=spec.encoding.value,
        )

    def _derive_eoa(self, spec: ChainSpec, index: int, node) -> DerivedKey:
        public_key = node.PublicKey().RawUncompressed().ToBytes()
        return DerivedKey(
            chain_type=spec.chain_type,
            index=index,
            address=EthAddrEncoder.EncodeKey(node.PublicKey().RawCompressed().ToBytes()),
            public_key="0x" + public_key.hex(),
            private_key=self._private_bytes(node).hex(),
            derivation_path=spec.derivation_path(index),
            address_type=spec.encoding.value,
        )

    def _derive_ed25519(self, spec: ChainSpec, index: int, node) -> DerivedKey:
        keypair = Keypair.from_seed(self._private_bytes(node)[:32])
        pubkey = str(keypair.pubkey())
        return DerivedKey(
            chain_type=spec.chain_type,
            index=index,
            address=pubkey,
            public_key=pubkey,
            private_key=bytes(keypair).hex(),
            derivation_path=spec.derivation_path(index),
            address_type=spec.encoding.value,
        )

    def _derive_xmr_placeholder(self, spec: ChainSpec, index: int, node) -> DerivedKey:
        seed_hash = hashlib.sha256(self._private_bytes(node)).digest()
        spend_key = seed_hash.hex()
        view_key = hashlib.sha256(seed_hash).hexdigest()
        # NOT a valid Monero address; see module docstring
        address = "4" + hashlib.sha256((spend_key + view_key).encode("utf-8")).hexdigest()
        return DerivedKey(
            chain_type=spec.chain_type,
            index=index,
            address=address,
            public_key="",
            private_key=spend_key,
            derivation_path=spec.derivation_path(index),
            address_type=spec.encoding.value,
            view_key=view_key,
        )
