"""
Ed25519 signing for snapshot artifacts.

Snapshots are signed over their exact on-disk bytes so a consumer can
verify an artifact without re-serializing it.
"""

import hashlib
from pathlib import Path
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey
)


class SnapshotSigner:
    """
    Sign snapshot bytes with an Ed25519 private key.

    Accepts a PEM (PKCS8) key file or a raw 32-byte key file.
    """

    def __init__(self, private_key_path: Path):
        """
        Raises:
            ValueError: If the key file cannot be loaded
        """
        self.private_key_path = Path(private_key_path)
        self._private_key = self._load_private_key()

    def _load_private_key(self) -> Ed25519PrivateKey:
        try:
            key_data = self.private_key_path.read_bytes()
        except OSError as e:
            raise ValueError(f"Failed to read private key {self.private_key_path}: {e}")

        if b"-----BEGIN" in key_data:
            try:
                private_key = serialization.load_pem_private_key(key_data, password=None)
            except ValueError as e:
                raise ValueError(f"Failed to load private key from {self.private_key_path}: {e}")
        elif len(key_data) == 32:
            private_key = Ed25519PrivateKey.from_private_bytes(key_data)
        else:
            raise ValueError(f"Invalid key format in {self.private_key_path}")

        if not isinstance(private_key, Ed25519PrivateKey):
            raise ValueError("Not an Ed25519 private key")

        return private_key

    def sign(self, data: Union[bytes, str]) -> bytes:
        """Return the 64-byte signature of data."""
        if isinstance(data, str):
            data = data.encode('utf-8')
        return self._private_key.sign(data)

    def get_public_key_bytes(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )


def load_public_key(public_key: Union[bytes, str, Ed25519PublicKey]) -> Ed25519PublicKey:
    """Load an Ed25519 public key from raw 32 bytes, hex, PEM, or a key object."""
    if isinstance(public_key, Ed25519PublicKey):
        return public_key

    if isinstance(public_key, str):
        if "-----BEGIN PUBLIC KEY-----" in public_key:
            public_key = public_key.encode('utf-8')
        else:
            public_key = bytes.fromhex(public_key)

    if b"-----BEGIN PUBLIC KEY-----" in public_key:
        key = serialization.load_pem_public_key(public_key)
    elif len(public_key) == 32:
        key = Ed25519PublicKey.from_public_bytes(public_key)
    else:
        raise ValueError("Invalid public key format")

    if not isinstance(key, Ed25519PublicKey):
        raise ValueError("Not an Ed25519 public key")
    return key


def verify_signature(
    public_key: Union[bytes, str, Ed25519PublicKey],
    data: bytes,
    signature: bytes,
) -> bool:
    """True if signature is a valid Ed25519 signature of data."""
    try:
        load_public_key(public_key).verify(signature, data)
        return True
    except InvalidSignature:
        return False


def generate_keypair() -> tuple[bytes, bytes]:
    """
    Generate a new Ed25519 keypair.

    Returns:
        Tuple of (private_key_bytes, public_key_bytes) - each 32 bytes
    """
    private_key = Ed25519PrivateKey.generate()

    private_bytes = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_bytes = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw
    )

    return private_bytes, public_bytes


def sha256_hex(data: Union[bytes, str]) -> str:
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()
