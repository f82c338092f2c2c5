"""Delegex exception hierarchy and the closed error-kind taxonomy.

All engine-specific exceptions inherit from :class:`DelegexError`.  Each
subclass carries a machine-readable :class:`ErrorKind` and the HTTP status
the server layer renders it with.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Every failure the engine reports, as a closed set.

    Using ``str, Enum`` so that ``ErrorKind.DUPLICATE_BATCH == "duplicate_batch"``.
    """

    # Identity verification
    SIGNATURE_MISMATCH = "signature_mismatch"
    CHALLENGE_EXPIRED = "challenge_expired"
    INVALID_CHALLENGE = "invalid_challenge"
    # Grant resolution
    NO_MATCHING_GRANT = "no_matching_grant"
    GRANT_CONFLICT = "grant_conflict"
    # Execution
    PERMISSION_DENIED = "permission_denied"
    DUPLICATE_BATCH = "duplicate_batch"
    STALE_OR_MISMATCHED_GRANT = "stale_or_mismatched_grant"
    TRANSIENT_NETWORK_ERROR = "transient_network_error"
    AMBIGUOUS_OUTCOME = "ambiguous_outcome"
    PARTIAL_EXECUTION_RISK = "partial_execution_risk"
    UNKNOWN_RELAY_ERROR = "unknown_relay_error"
    # Setup
    CONFIGURATION_ERROR = "configuration_error"
    INVALID_ADDRESS = "invalid_address"


class ResolutionCause(str, Enum):
    """Why no grant qualified for a request."""

    NO_GRANT_FOR_WALLET = "no_grant_for_wallet"
    ALL_GRANTS_EXPIRED = "all_grants_expired"
    SCOPE_INSUFFICIENT = "scope_insufficient"


class DelegexError(Exception):
    """Base exception for all delegex errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN_RELAY_ERROR
    status_code: int = 400


class InvalidAddressError(DelegexError):
    """Raised when a wallet or contract address fails validation."""

    kind = ErrorKind.INVALID_ADDRESS
    status_code = 400


class VerificationError(DelegexError):
    """Base for failed wallet-ownership proofs."""


class SignatureMismatchError(VerificationError):
    """The recovered signer is not the claimed wallet address."""

    kind = ErrorKind.SIGNATURE_MISMATCH
    status_code = 401


class ChallengeExpiredError(VerificationError):
    """The challenge timestamp is older than the freshness window."""

    kind = ErrorKind.CHALLENGE_EXPIRED
    status_code = 401


class InvalidChallengeError(VerificationError):
    """The message was not issued by this server, was already used, or names
    a different identity."""

    kind = ErrorKind.INVALID_CHALLENGE
    status_code = 400


class NoMatchingGrantError(DelegexError):
    """No stored grant authorizes the requested targets.

    The three causes share one kind; :attr:`cause` tells them apart.
    """

    kind = ErrorKind.NO_MATCHING_GRANT
    status_code = 404

    def __init__(self, cause: ResolutionCause, detail: str) -> None:
        super().__init__(detail)
        self.cause = cause
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.cause.value}: {self.detail}"


class GrantConflictError(DelegexError):
    """A grant id was re-synced with content that differs from the stored row."""

    kind = ErrorKind.GRANT_CONFLICT
    status_code = 409


class ConfigurationError(DelegexError):
    """Missing or mismatched backend key material.  Fatal, never retried."""

    kind = ErrorKind.CONFIGURATION_ERROR
    status_code = 500


class RelayError(DelegexError):
    """Base for failures talking to the relay."""


class RelayRpcError(RelayError):
    """The relay answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: int | None = None, data: object = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class RelayTransportError(RelayError):
    """The relay could not be reached or did not answer in time.

    ``request_sent`` is ``False`` only when the request provably never left
    this process (connection refused, connect timeout).
    """

    def __init__(self, message: str, *, request_sent: bool = True, timed_out: bool = False) -> None:
        super().__init__(message)
        self.request_sent = request_sent
        self.timed_out = timed_out
