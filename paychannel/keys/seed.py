"""
Master seed loading.

The seed has one owner: it is loaded once at startup and injected into the
KeyDerivationEngine. A missing or malformed seed is a fatal configuration
error; a throwaway seed is never generated at runtime because every address
derived from it would become unrecoverable after a restart.
"""
import binascii
import logging
from dataclasses import dataclass, field

from bip_utils import Bip39MnemonicGenerator, Bip39MnemonicValidator, Bip39SeedGenerator, Bip39WordsNum

from paychannel.core.errors import ConfigurationError

logger = logging.getLogger("paychannel.keys.seed")

MIN_SEED_BYTES = 16
MAX_SEED_BYTES = 64


@dataclass(frozen=True)
class MasterSeed:
    value: bytes = field(repr=False)
    source: str = "env"

    def __len__(self):
        return len(self.value)


def parse_seed_hex(seed_hex: str) -> bytes:
    try:
        raw = bytes.fromhex(seed_hex.strip())
    except (ValueError, binascii.Error):
        raise ConfigurationError("CRYPTO_MASTER_SEED must be hex encoded") from None
    if not MIN_SEED_BYTES <= len(raw) <= MAX_SEED_BYTES:
        raise ConfigurationError(
            f"CRYPTO_MASTER_SEED must be {MIN_SEED_BYTES}-{MAX_SEED_BYTES} bytes, got {len(raw)}"
        )
    return raw


def load_master_seed(settings) -> MasterSeed:
    """Build the master seed from CRYPTO_MASTER_SEED (hex) or CRYPTO_MASTER_MNEMONIC (BIP39)."""
    seed_hex = getattr(settings, "CRYPTO_MASTER_SEED", None)
    mnemonic = getattr(settings, "CRYPTO_MASTER_MNEMONIC", None)
    if seed_hex and mnemonic:
        raise ConfigurationError("Set only one of CRYPTO_MASTER_SEED and CRYPTO_MASTER_MNEMONIC")
    if seed_hex:
        seed = MasterSeed(parse_seed_hex(seed_hex), source="CRYPTO_MASTER_SEED")
    elif mnemonic:
        mnemonic = " ".join(mnemonic.split())
        if not Bip39MnemonicValidator().IsValid(mnemonic):
            raise ConfigurationError("CRYPTO_MASTER_MNEMONIC is not a valid BIP39 mnemonic")
        passphrase = getattr(settings, "CRYPTO_MASTER_PASSPHRASE", "") or ""
        seed = MasterSeed(bytes(Bip39SeedGenerator(mnemonic).Generate(passphrase)), source="CRYPTO_MASTER_MNEMONIC")
    else:
        raise ConfigurationError(
            "No master seed configured. Set CRYPTO_MASTER_SEED (or CRYPTO_MASTER_MNEMONIC); "
            "generate one with `python -m paychannel.bin.generate_seed` and store it before first use."
        )
    logger.info("Loaded master seed from %s (%s bytes)", seed.source, len(seed))
    return seed


def generate_master_seed(words: int = 24, passphrase: str = "") -> tuple[str, MasterSeed]:
    """Return a fresh (mnemonic, seed) pair for operators to store out-of-band."""
    words_num = Bip39WordsNum(words)
    mnemonic = Bip39MnemonicGenerator().FromWordsNumber(words_num).ToStr()
    seed = bytes(Bip39SeedGenerator(mnemonic).Generate(passphrase))
    return mnemonic, MasterSeed(seed, source="generated")
