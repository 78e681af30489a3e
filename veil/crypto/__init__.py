"""
Cryptographic primitives for Veil.

This module provides:
- Hashing functions (SHA-256, Keccak-256)
- Key generation and account addresses
- Digital signatures (ECDSA on secp256k1)
- Authenticated symmetric sealing of ciphertexts (AES-GCM)

Design Notes:
-------------
We use secp256k1 (same as Ethereum) for account keys and addresses, and
for the signatures produced by the coprocessor's input verifier and the
decryption oracle. Addresses are the last 20 bytes of keccak256(public_key),
hex-encoded with a 0x prefix, so every principal is a plain string.

Ciphertexts held by the coprocessor are sealed with AES-256-GCM under the
network key (see veil.crypto.sealing).
"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional

from Crypto.Hash import keccak
from py_ecc.secp256k1 import secp256k1


# =============================================================================
# Constants
# =============================================================================

# secp256k1 curve order (number of points on the curve)
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# Address of nobody (mint source / burn target)
ZERO_ADDRESS = "0x" + "00" * 20


# =============================================================================
# Hashing
# =============================================================================


def sha256(data: bytes) -> bytes:
    """
    Compute SHA-256 hash.

    Used for: audit record ids, general content addressing.
    """
    return hashlib.sha256(data).digest()


def keccak256(data: bytes) -> bytes:
    """
    Compute Keccak-256 hash (Ethereum-style).

    Used for: address derivation, ciphertext handles, proof digests.
    """
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# =============================================================================
# Key Generation
# =============================================================================


@dataclass
class KeyPair:
    """
    An ECDSA keypair on secp256k1.

    Attributes:
        private_key: 32-byte secret key (integer in [1, order-1])
        public_key: 64-byte uncompressed public key (x || y coordinates)
    """
    private_key: bytes  # 32 bytes
    public_key: bytes   # 64 bytes (uncompressed, no 0x04 prefix)

    @property
    def address(self) -> str:
        """Account address derived from the public key."""
        return address_from_public_key(self.public_key)

    @property
    def public_key_hex(self) -> str:
        """Return public key as hex string."""
        return self.public_key.hex()


def generate_keypair() -> KeyPair:
    """
    Generate a new random keypair.

    Uses cryptographically secure random number generator.
    """
    private_key_int = secrets.randbelow(SECP256K1_ORDER - 1) + 1
    private_key = private_key_int.to_bytes(32, byteorder="big")
    return KeyPair(private_key=private_key, public_key=private_key_to_public_key(private_key))


def private_key_to_public_key(private_key: bytes) -> bytes:
    """
    Derive public key from private key.

    Args:
        private_key: 32-byte private key

    Returns:
        64-byte uncompressed public key
    """
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    public_key_point = secp256k1.privtopub(private_key)
    x_bytes = public_key_point[0].to_bytes(32, byteorder="big")
    y_bytes = public_key_point[1].to_bytes(32, byteorder="big")
    return x_bytes + y_bytes


def address_from_public_key(public_key: bytes) -> str:
    """Ethereum-style address: 0x + last 20 bytes of keccak256(public_key)."""
    return "0x" + keccak256(public_key)[-20:].hex()


def derive_contract_address(deployer: str, nonce: int) -> str:
    """
    Deterministic contract address from deployer address and nonce.

    Not RLP-encoded like Ethereum's CREATE, but stable and collision-resistant.
    """
    data = hex_to_bytes(deployer) + nonce.to_bytes(8, byteorder="big")
    return "0x" + keccak256(data)[-20:].hex()


# =============================================================================
# Digital Signatures (ECDSA)
# =============================================================================


def sign(message_hash: bytes, private_key: bytes) -> bytes:
    """
    Sign a message hash using ECDSA on secp256k1.

    Args:
        message_hash: 32-byte hash of the message to sign
        private_key: 32-byte private key

    Returns:
        65-byte signature (r || s || v), v in {27, 28}
    """
    if len(message_hash) != 32:
        raise ValueError("Message hash must be 32 bytes")
    if len(private_key) != 32:
        raise ValueError("Private key must be 32 bytes")

    v, r, s = secp256k1.ecdsa_raw_sign(message_hash, private_key)

    return r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big") + bytes([v])


def recover_public_key(message_hash: bytes, signature: bytes) -> Optional[bytes]:
    """
    Recover the signer's public key from a 65-byte signature.

    Returns:
        64-byte public key, or None if recovery fails
    """
    if len(message_hash) != 32 or len(signature) != 65:
        return None

    r = int.from_bytes(signature[:32], byteorder="big")
    s = int.from_bytes(signature[32:64], byteorder="big")
    v = signature[64]

    if not (1 <= r < SECP256K1_ORDER and 1 <= s < SECP256K1_ORDER):
        return None
    if v not in (27, 28):
        return None

    try:
        recovered = secp256k1.ecdsa_raw_recover(message_hash, (v, r, s))
    except Exception:
        return None
    if not recovered:
        return None

    return recovered[0].to_bytes(32, byteorder="big") + recovered[1].to_bytes(32, byteorder="big")


def verify(message_hash: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    Verify an ECDSA signature.

    Args:
        message_hash: 32-byte hash of the signed message
        signature: 65-byte signature (r || s || v)
        public_key: 64-byte public key (x || y)

    Returns:
        True if signature is valid, False otherwise
    """
    if len(public_key) != 64:
        return False
    return recover_public_key(message_hash, signature) == public_key


# =============================================================================
# Utility Functions
# =============================================================================


def bytes_to_hex(data: bytes) -> str:
    """Convert bytes to hex string with 0x prefix."""
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """Convert hex string (with or without 0x prefix) to bytes."""
    if hex_str.startswith("0x") or hex_str.startswith("0X"):
        hex_str = hex_str[2:]
    return bytes.fromhex(hex_str)


def is_valid_address(address: str) -> bool:
    """Check if string is a valid address format."""
    if not isinstance(address, str) or not address.startswith("0x"):
        return False
    if len(address) != 42:  # 0x + 40 hex chars
        return False
    try:
        int(address, 16)
        return True
    except ValueError:
        return False


from veil.crypto.sealing import NetworkKey, seal, unseal, SealingError

__all__ = [
    "SECP256K1_ORDER",
    "ZERO_ADDRESS",
    "sha256",
    "keccak256",
    "KeyPair",
    "generate_keypair",
    "private_key_to_public_key",
    "address_from_public_key",
    "derive_contract_address",
    "sign",
    "verify",
    "recover_public_key",
    "bytes_to_hex",
    "hex_to_bytes",
    "is_valid_address",
    "NetworkKey",
    "seal",
    "unseal",
    "SealingError",
]
