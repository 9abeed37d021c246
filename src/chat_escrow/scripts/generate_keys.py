# src/chat_escrow/scripts/generate_keys.py
"""Generate an RSA-2048 escrow key pair for message key wrapping.

Usage:
  python -m chat_escrow.scripts.generate_keys            # new key
  python -m chat_escrow.scripts.generate_keys --rotate   # new key plus rotation steps

The public JWK is distributed to clients, which wrap every message key for it.
The private JWK goes into ADMIN_KEYS_JSON (or ADMIN_PRIVATE_KEY_JWK) and must
never be committed.
"""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from datetime import UTC, datetime
from typing import Any

from chat_escrow.services.crypto import CryptoService

RULE = "=" * 80


def generate_escrow_key() -> dict[str, Any]:
    """Return a new key id with its public and private JWKs."""
    private_key = CryptoService.generate_keypair()
    generated_at = datetime.now(UTC)
    return {
        "keyId": str(uuid.uuid4()),
        "keyName": f"escrow_key_{int(generated_at.timestamp())}",
        "publicKeyJwk": CryptoService.public_key_to_jwk(private_key.public_key()),
        "privateKeyJwk": CryptoService.private_key_to_jwk(private_key),
        "generatedAt": generated_at.isoformat(),
    }


def _section(title: str) -> None:
    print(RULE)
    print(title)
    print(RULE)


def render(key: dict[str, Any], *, rotate: bool = False) -> None:
    public_jwk = json.dumps(key["publicKeyJwk"], separators=(",", ":"))
    private_jwk = json.dumps(key["privateKeyJwk"], separators=(",", ":"))

    _section(f"KEY ID: {key['keyId']}")
    print("\nClients record this id as admin_key_id in every key envelope.\n")

    _section("PUBLIC KEY (distribute to clients)")
    print(public_jwk)
    print()

    _section("PRIVATE KEY - SINGLE KEY FORMAT")
    print("\nADMIN_PRIVATE_KEY_JWK (legacy fallback, single line):")
    print(private_jwk)
    print()

    _section("PRIVATE KEY - KEY-ID MAP FORMAT")
    print('\nADMIN_KEYS_JSON format: {"key-id-1": {...jwk...}, "key-id-2": {...jwk...}}')
    print("Add this entry to the existing map:")
    print(f'"{key["keyId"]}": {private_jwk}')

    if rotate:
        print()
        _section("KEY ROTATION STEPS")
        print(
            "\n1. Publish the new public key and retire the old one for new messages.\n"
            "2. Add the new private key to ADMIN_KEYS_JSON and keep the old entries.\n"
            "3. Redeploy the service.\n"
            "4. Confirm new messages carry the new key id.\n"
            "5. Confirm older messages still decrypt.\n"
            "6. Remove an old key only once no message references it."
        )

    # Full backup on stderr so it can be redirected to a file.
    print("\n--- KEY BACKUP (redirect stderr to save) ---", file=sys.stderr)
    print(json.dumps(key, indent=2), file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate an escrow RSA key pair")
    parser.add_argument(
        "--rotate",
        action="store_true",
        help="Print the steps for rotating to the new key",
    )
    args = parser.parse_args(argv)

    print("Generating RSA-2048 escrow key pair...\n")
    render(generate_escrow_key(), rotate=args.rotate)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
