"""Generate a fresh custody keypair and print it in both accepted BOT_PRIVATE_KEY formats."""

from __future__ import annotations

import argparse
import json
import os
import sys

import base58
from solders.keypair import Keypair

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from trading.wallet import load_keypair  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a Solana keypair for BOT_PRIVATE_KEY.")
    parser.add_argument(
        "--format",
        choices=("both", "json", "base58"),
        default="both",
        help="Which secret encoding to print.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    keypair = Keypair()
    as_json = json.dumps(list(bytes(keypair)))
    as_base58 = base58.b58encode(bytes(keypair)).decode("ascii")

    # Both encodings must load back to the same public key.
    for secret in (as_json, as_base58):
        if load_keypair(secret).pubkey() != keypair.pubkey():
            print("FAIL: generated secret does not round-trip", file=sys.stderr)
            return 1

    print(f"Public Key: {keypair.pubkey()}")
    if args.format in ("both", "json"):
        print("BOT_PRIVATE_KEY (JSON array):")
        print(as_json)
    if args.format in ("both", "base58"):
        print("BOT_PRIVATE_KEY (base58 alternative):")
        print(as_base58)
    return 0


if __name__ == "__main__":
    sys.exit(main())
