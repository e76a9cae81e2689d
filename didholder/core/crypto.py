# didholder/core/crypto.py
from __future__ import annotations

from pathlib import Path
import json
import base64

import jwt
import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from didholder.core.config import settings


def b64url_decode(s: str) -> bytes:
    """Base64url (or standard base64), padding optional, to bytes."""
    s = s.replace("-", "+").replace("_", "/")
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s.encode(), validate=True)


def decode_unverified(token: str) -> dict:
    """
    Claims of a compact JWT without checking its signature or time claims.
    Raises jwt.InvalidTokenError on any malformed segment.
    """
    return jwt.decode(token, options={"verify_signature": False})


def decode_disclosure(segment: str) -> list:
    """SD-JWT disclosure: base64url(JSON array [salt, name, value])."""
    value = json.loads(b64url_decode(segment).decode("utf-8"))
    if not isinstance(value, list):
        raise ValueError("disclosure is not a JSON array")
    return value


class KeyfileWallet:
    """
    Wallet adapter backed by a local Ed25519 key. Exposes the same capability
    the browser wallet does: a base58 public key and sign(bytes) -> signature.
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._key = private_key
        raw = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.public_key: str | None = base58.b58encode(raw).decode("ascii")

    @classmethod
    def generate(cls) -> "KeyfileWallet":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_pem(cls, path: str | Path) -> "KeyfileWallet":
        key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise ValueError(f"{path} is not an Ed25519 private key")
        return cls(key)

    def to_pem(self) -> bytes:
        return self._key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    async def sign_message(self, message: bytes) -> bytes:
        return self._key.sign(message)


def load_wallet() -> KeyfileWallet | None:
    """Wallet from WALLET_KEY_PATH, or None when no key file is present (disconnected)."""
    path = Path(settings.wallet_key_path)
    if not path.exists():
        return None
    return KeyfileWallet.from_pem(path)


def verify_signature(public_key: str, message: bytes, signature: bytes) -> bool:
    try:
        pub = Ed25519PublicKey.from_public_bytes(base58.b58decode(public_key))
        pub.verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False
