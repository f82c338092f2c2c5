"""Delegex protocol layer -- value types, errors, addresses and crypto.

Public API re-exports for ``delegex.protocol``.
"""

from delegex.protocol.errors import (
    ChallengeExpiredError,
    ConfigurationError,
    DelegexError,
    ErrorKind,
    GrantConflictError,
    InvalidAddressError,
    InvalidChallengeError,
    NoMatchingGrantError,
    RelayError,
    RelayRpcError,
    RelayTransportError,
    ResolutionCause,
    SignatureMismatchError,
    VerificationError,
)

from delegex.protocol.address import (
    ZERO_ADDRESS,
    checksum_address,
    normalize_address,
    normalize_targets,
    validate_address,
)

from delegex.protocol.types import (
    Call,
    DelegatedCallBatch,
    ExecutionOutcome,
    KeyType,
    SpendPeriod,
    hex_quantity,
    unix_now,
    utc_now,
)

from delegex.protocol.crypto import (
    keccak_text,
    recover_message_signer,
    sign_wallet_message,
)

__all__ = [
    # Errors
    "ChallengeExpiredError",
    "ConfigurationError",
    "DelegexError",
    "ErrorKind",
    "GrantConflictError",
    "InvalidAddressError",
    "InvalidChallengeError",
    "NoMatchingGrantError",
    "RelayError",
    "RelayRpcError",
    "RelayTransportError",
    "ResolutionCause",
    "SignatureMismatchError",
    "VerificationError",
    # Addresses
    "ZERO_ADDRESS",
    "checksum_address",
    "normalize_address",
    "normalize_targets",
    "validate_address",
    # Types
    "Call",
    "DelegatedCallBatch",
    "ExecutionOutcome",
    "KeyType",
    "SpendPeriod",
    "hex_quantity",
    "unix_now",
    "utc_now",
    # Crypto
    "keccak_text",
    "recover_message_signer",
    "sign_wallet_message",
]
