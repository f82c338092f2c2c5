"""EVM account address validation and normalization.

Addresses arrive checksum-cased from wallets.  The original string is kept
for audit; every comparison goes through :func:`normalize_address`.
"""

from __future__ import annotations

from collections.abc import Iterable

from eth_utils import is_address, is_checksum_address, remove_0x_prefix, to_checksum_address

from delegex.protocol.errors import InvalidAddressError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def validate_address(value: str) -> str:
    """Return *value* stripped, raising ``InvalidAddressError`` if it is not
    a 20-byte hex address.

    Mixed-case input with a bad EIP-55 checksum is rejected.
    """
    if not isinstance(value, str):
        raise InvalidAddressError(f"Address must be a string, got {type(value).__name__}")
    candidate = value.strip()
    if not is_address(candidate):
        raise InvalidAddressError(f"Invalid address: {value!r}")
    digits = remove_0x_prefix(candidate)
    if digits not in (digits.lower(), digits.upper()) and not is_checksum_address(candidate):
        raise InvalidAddressError(f"Bad EIP-55 checksum: {value!r}")
    return candidate


def normalize_address(value: str) -> str:
    """Lower-case form used for lookups and set comparisons."""
    return validate_address(value).lower()


def checksum_address(value: str) -> str:
    """EIP-55 checksum form used on the wire."""
    return to_checksum_address(validate_address(value))


def normalize_targets(values: Iterable[str]) -> frozenset[str]:
    """Normalize a collection of contract addresses into a comparison set."""
    return frozenset(normalize_address(v) for v in values)
