"""Delegated execution engine services.

Every service takes its collaborators in its constructor; the server's
lifespan wires them together.
"""

from delegex.core.calls import (
    available_actions,
    build_approve_and_swap,
    build_approve_and_transfer,
    build_calls,
    build_mint,
    build_transfer,
    min_amount_out,
    parse_units,
    register_builder,
)
from delegex.core.classify import classify_exception, classify_relay_error
from delegex.core.executor import BatchStatus, DelegatedExecutor, normalize_submit_result
from delegex.core.resolver import PermissionResolver, select_grant
from delegex.core.session_key import SessionKeyManager, SigningKeyHandle
from delegex.core.verification import Challenge, ChallengeStore, IdentityVerifier

__all__ = [
    "available_actions",
    "build_approve_and_swap",
    "build_approve_and_transfer",
    "build_calls",
    "build_mint",
    "build_transfer",
    "min_amount_out",
    "parse_units",
    "register_builder",
    "classify_exception",
    "classify_relay_error",
    "BatchStatus",
    "DelegatedExecutor",
    "normalize_submit_result",
    "PermissionResolver",
    "select_grant",
    "SessionKeyManager",
    "SigningKeyHandle",
    "Challenge",
    "ChallengeStore",
    "IdentityVerifier",
]
