"""
Print a fresh BIP39 mnemonic, its seed and a custody encryption key.

Usage: python -m paychannel.bin.generate_seed [--words 24]

Store the output out-of-band (secret manager) BEFORE the first channel is created:
every address ever derived depends on the seed, and every stored private key on the
encryption key. Nothing is written to disk.
"""
import argparse
import secrets
import sys

from paychannel.keys.seed import generate_master_seed


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--words", type=int, default=24, choices=(12, 15, 18, 21, 24))
    args = parser.parse_args(argv)

    mnemonic, seed = generate_master_seed(args.words)
    print(f"CRYPTO_MASTER_MNEMONIC={mnemonic}")
    print(f"CRYPTO_MASTER_SEED={seed.value.hex()}")
    print(f"CRYPTO_ENCRYPTION_KEY={secrets.token_hex(32)}")
    print("Set exactly one of CRYPTO_MASTER_MNEMONIC / CRYPTO_MASTER_SEED.", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
