# src/chat_escrow/services/crypto.py
"""Cryptographic primitives for escrowed chat messages.

Message content is sealed with AES-256-GCM under a fresh per-message key;
that key is wrapped with RSA-OAEP/SHA-256 for each party able to recover it.
Only unwrap and decrypt are used by the service itself. The encrypt and wrap
halves exist for tests and key tooling.
"""

from __future__ import annotations

import base64
import json
import os
from collections.abc import Mapping
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from chat_escrow.core.errors import AuthenticationTagError, CryptoError, KeyUnwrapError

SYMMETRIC_ALGORITHM = "AES-256-GCM"
KEY_WRAP_ALGORITHM = "RSA-OAEP-SHA256"
SYMMETRIC_KEY_BYTES = 32
IV_LENGTH_BYTES = 12
RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode()


def b64decode(data: str) -> bytes:
    """Decode standard or URL-safe base64, accepting omitted padding.

    Raises:
        ValueError: If `data` is not valid base64.
    """
    cleaned = data.strip()
    padded = cleaned + "=" * (-len(cleaned) % 4)
    try:
        if "-" in padded or "_" in padded:
            return base64.urlsafe_b64decode(padded)
        return base64.b64decode(padded, validate=True)
    except ValueError as err:
        raise ValueError(f"Invalid base64 encoding: {err}") from err


def _b64url_uint(value: str) -> int:
    return int.from_bytes(b64decode(value), "big")


def _uint_b64url(value: int) -> str:
    length = max(1, (value.bit_length() + 7) // 8)
    return base64.urlsafe_b64encode(value.to_bytes(length, "big")).decode().rstrip("=")


class CryptoService:
    """Service handling key unwrapping and authenticated decryption."""

    @staticmethod
    def unwrap_key(wrapped_key_b64: str, private_key: rsa.RSAPrivateKey) -> bytes:
        """Unwrap a base64 RSA-OAEP/SHA-256 wrapped message key.

        Raises:
            KeyUnwrapError: For any failure. The cause is never surfaced.
        """
        try:
            wrapped = b64decode(wrapped_key_b64)
            return private_key.decrypt(wrapped, _OAEP)
        except (ValueError, TypeError) as err:
            raise KeyUnwrapError() from err

    @staticmethod
    def decrypt(ciphertext: bytes, raw_key: bytes, iv: bytes) -> bytes:
        """Authenticated AES-256-GCM decryption of `ciphertext` (tag appended).

        Raises:
            CryptoError: If the key is not a 256-bit key.
            AuthenticationTagError: If the data was altered or key/iv are wrong.
        """
        if len(raw_key) != SYMMETRIC_KEY_BYTES:
            raise CryptoError()
        try:
            return AESGCM(raw_key).decrypt(iv, ciphertext, None)
        except (InvalidTag, ValueError) as err:
            raise AuthenticationTagError() from err

    @staticmethod
    def encrypt(plaintext: bytes, raw_key: bytes, iv: bytes) -> bytes:
        """AES-256-GCM encryption producing ciphertext with the tag appended."""
        return AESGCM(raw_key).encrypt(iv, plaintext, None)

    @staticmethod
    def wrap_key(raw_key: bytes, public_key: rsa.RSAPublicKey) -> str:
        """Wrap a message key for `public_key`, returning base64."""
        return b64encode(public_key.encrypt(raw_key, _OAEP))

    @staticmethod
    def generate_key() -> bytes:
        return AESGCM.generate_key(bit_length=SYMMETRIC_KEY_BYTES * 8)

    @staticmethod
    def generate_iv() -> bytes:
        return os.urandom(IV_LENGTH_BYTES)

    @staticmethod
    def generate_keypair() -> rsa.RSAPrivateKey:
        """Generate an RSA-2048 key pair suitable for escrow key wrapping."""
        return rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=RSA_KEY_SIZE,
        )

    @staticmethod
    def private_key_from_jwk(jwk: Mapping[str, Any]) -> rsa.RSAPrivateKey:
        """Build an RSA private key from a JWK mapping.

        CRT parameters are recomputed when the JWK carries only `n`, `e`, `d`.

        Raises:
            ValueError: If the JWK is not a usable RSA private key.
        """
        if jwk.get("kty") not in (None, "RSA"):
            raise ValueError(f"Unsupported JWK key type: {jwk.get('kty')}")
        try:
            n = _b64url_uint(jwk["n"])
            e = _b64url_uint(jwk["e"])
            d = _b64url_uint(jwk["d"])
        except KeyError as err:
            raise ValueError(f"JWK is missing required member {err}") from err

        if "p" in jwk and "q" in jwk:
            p = _b64url_uint(jwk["p"])
            q = _b64url_uint(jwk["q"])
        else:
            p, q = rsa.rsa_recover_prime_factors(n, e, d)

        dmp1 = _b64url_uint(jwk["dp"]) if "dp" in jwk else rsa.rsa_crt_dmp1(d, p)
        dmq1 = _b64url_uint(jwk["dq"]) if "dq" in jwk else rsa.rsa_crt_dmq1(d, q)
        iqmp = _b64url_uint(jwk["qi"]) if "qi" in jwk else rsa.rsa_crt_iqmp(p, q)

        numbers = rsa.RSAPrivateNumbers(
            p=p,
            q=q,
            d=d,
            dmp1=dmp1,
            dmq1=dmq1,
            iqmp=iqmp,
            public_numbers=rsa.RSAPublicNumbers(e=e, n=n),
        )
        return numbers.private_key()

    @staticmethod
    def load_private_key(encoded: str | Mapping[str, Any]) -> rsa.RSAPrivateKey:
        """Load an escrow private key given as a JWK (mapping or JSON) or PEM.

        Raises:
            ValueError: If the key cannot be parsed or is not RSA.
        """
        if isinstance(encoded, Mapping):
            return CryptoService.private_key_from_jwk(encoded)

        text = encoded.strip()
        if text.startswith("{"):
            try:
                return CryptoService.private_key_from_jwk(json.loads(text))
            except json.JSONDecodeError as err:
                raise ValueError(f"Invalid JWK JSON: {err}") from err

        try:
            key = serialization.load_pem_private_key(text.encode(), password=None)
        except (ValueError, TypeError) as err:
            raise ValueError(f"Invalid PEM private key: {err}") from err
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("Escrow keys must be RSA private keys")
        return key

    @staticmethod
    def public_key_to_jwk(public_key: rsa.RSAPublicKey) -> dict[str, Any]:
        numbers = public_key.public_numbers()
        return {
            "kty": "RSA",
            "alg": "RSA-OAEP-256",
            "ext": True,
            "key_ops": ["encrypt"],
            "n": _uint_b64url(numbers.n),
            "e": _uint_b64url(numbers.e),
        }

    @staticmethod
    def private_key_to_jwk(private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
        numbers = private_key.private_numbers()
        jwk = CryptoService.public_key_to_jwk(private_key.public_key())
        jwk.update(
            {
                "key_ops": ["decrypt"],
                "d": _uint_b64url(numbers.d),
                "p": _uint_b64url(numbers.p),
                "q": _uint_b64url(numbers.q),
                "dp": _uint_b64url(numbers.dmp1),
                "dq": _uint_b64url(numbers.dmq1),
                "qi": _uint_b64url(numbers.iqmp),
            }
        )
        return jwk


def unwrap_key(wrapped_key_b64: str, private_key: rsa.RSAPrivateKey) -> bytes:
    """Module-level alias of `CryptoService.unwrap_key`."""
    return CryptoService.unwrap_key(wrapped_key_b64, private_key)


def decrypt(ciphertext: bytes, raw_key: bytes, iv: bytes) -> bytes:
    """Module-level alias of `CryptoService.decrypt`."""
    return CryptoService.decrypt(ciphertext, raw_key, iv)
