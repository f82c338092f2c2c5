"""Cryptographic primitives for wallet proofs and backend session keys.

Wallet ownership proofs are EIP-191 ``personal_sign`` messages, recovered
with eth-account.  Session keys sign relay digests with either P-256 ECDSA
(``cryptography``) or secp256k1 (``eth-keys``).

This module never hand-rolls crypto -- every operation delegates to those
libraries.
"""

from __future__ import annotations

import secrets

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_utils import keccak, to_checksum_address

from delegex.protocol.errors import ConfigurationError, SignatureMismatchError
from delegex.protocol.types import KeyType

# Group orders of the two supported curves
P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_ORDERS = {KeyType.P256: P256_ORDER, KeyType.SECP256K1: SECP256K1_ORDER}

DIGEST_SIZE = 32


# ---------------------------------------------------------------------------
# Hex helpers
# ---------------------------------------------------------------------------


def to_0x(data: bytes) -> str:
    return "0x" + data.hex()


def from_0x(value: str) -> bytes:
    """Decode a ``0x``-prefixed (or bare) hex string."""
    text = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(text)


def keccak_text(text: str) -> str:
    """Keccak-256 of the UTF-8 text, ``0x``-prefixed."""
    return to_0x(keccak(text=text))


# ---------------------------------------------------------------------------
# Wallet proofs (EIP-191 personal_sign)
# ---------------------------------------------------------------------------


def recover_message_signer(message: str, signature: str) -> str:
    """Recover the checksum address that signed *message* with ``personal_sign``.

    Raises ``SignatureMismatchError`` when the signature cannot be decoded or
    does not yield a valid public key.
    """
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as exc:  # eth-account raises several unrelated types here
        raise SignatureMismatchError(f"Signature could not be recovered: {exc}") from exc
    return to_checksum_address(recovered)


def sign_wallet_message(message: str, private_key: str | bytes) -> str:
    """Sign *message* the way a wallet does for ``personal_sign``.

    Used by tests and the local demo flow; production wallets sign client-side.
    """
    signed = Account.sign_message(encode_defunct(text=message), private_key=private_key)
    return to_0x(bytes(signed.signature))


# ---------------------------------------------------------------------------
# Session key material
# ---------------------------------------------------------------------------


def parse_private_key(value: str, key_type: KeyType) -> bytes:
    """Decode and range-check a hex private key for *key_type*."""
    try:
        raw = from_0x(value.strip())
    except ValueError as exc:
        raise ConfigurationError(f"Session key is not valid hex: {exc}") from exc
    if len(raw) != 32:
        raise ConfigurationError(f"Session key must be 32 bytes, got {len(raw)}")
    scalar = int.from_bytes(raw, "big")
    if not 0 < scalar < _ORDERS[key_type]:
        raise ConfigurationError(f"Session key is out of range for {key_type.value}")
    return raw


def generate_private_key(key_type: KeyType) -> bytes:
    """Generate a fresh 32-byte private scalar for *key_type*."""
    if key_type is KeyType.P256:
        private = ec.generate_private_key(ec.SECP256R1())
        return private.private_numbers().private_value.to_bytes(32, "big")
    while True:
        raw = secrets.token_bytes(32)
        if 0 < int.from_bytes(raw, "big") < SECP256K1_ORDER:
            return raw


def p256_private_key(secret: bytes) -> ec.EllipticCurvePrivateKey:
    return ec.derive_private_key(int.from_bytes(secret, "big"), ec.SECP256R1())


def p256_public_id(private_key: ec.EllipticCurvePrivateKey) -> str:
    """Public identifier of a P-256 key: ``0x`` + 32-byte x + 32-byte y."""
    numbers = private_key.public_key().public_numbers()
    return to_0x(numbers.x.to_bytes(32, "big") + numbers.y.to_bytes(32, "big"))


def sign_digest_p256(private_key: ec.EllipticCurvePrivateKey, digest: bytes) -> str:
    """Sign a 32-byte digest without re-hashing; returns low-s ``r || s``."""
    if len(digest) != DIGEST_SIZE:
        raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
    der = private_key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    r, s = decode_dss_signature(der)
    if s > P256_ORDER // 2:
        s = P256_ORDER - s
    return to_0x(r.to_bytes(32, "big") + s.to_bytes(32, "big"))


def verify_digest_p256(public_id: str, digest: bytes, signature: str) -> bool:
    """Check an ``r || s`` signature over *digest* against an ``x || y`` public id."""
    try:
        pub = from_0x(public_id)
        sig = from_0x(signature)
    except ValueError:
        return False
    if len(pub) != 64 or len(sig) != 64 or len(digest) != DIGEST_SIZE:
        return False
    x, y = int.from_bytes(pub[:32], "big"), int.from_bytes(pub[32:], "big")
    r, s = int.from_bytes(sig[:32], "big"), int.from_bytes(sig[32:], "big")
    try:
        public_key = ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1()).public_key()
        public_key.verify(encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    except (InvalidSignature, ValueError):
        return False
    return True


def secp256k1_private_key(secret: bytes) -> keys.PrivateKey:
    return keys.PrivateKey(secret)


def secp256k1_public_id(private_key: keys.PrivateKey) -> str:
    """Public identifier of a secp256k1 key: its checksum account address."""
    return private_key.public_key.to_checksum_address()


def sign_digest_secp256k1(private_key: keys.PrivateKey, digest: bytes) -> str:
    """Sign a 32-byte digest; returns ``r || s || v`` (65 bytes)."""
    if len(digest) != DIGEST_SIZE:
        raise ValueError(f"Digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
    return to_0x(private_key.sign_msg_hash(digest).to_bytes())


def recover_digest_secp256k1(digest: bytes, signature: str) -> str | None:
    """Recover the checksum address behind a secp256k1 digest signature."""
    try:
        sig = keys.Signature(signature_bytes=from_0x(signature))
        return sig.recover_public_key_from_msg_hash(digest).to_checksum_address()
    except Exception:  # malformed signatures surface as several eth-keys types
        return None
