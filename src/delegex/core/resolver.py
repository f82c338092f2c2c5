"""Grant resolution: pick the grant that authorizes a batch, or say why none does."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from delegex.db.models import PermissionGrant
from delegex.db.stores import GrantStore
from delegex.protocol.address import normalize_address, normalize_targets
from delegex.protocol.errors import NoMatchingGrantError, ResolutionCause
from delegex.protocol.types import unix_now

logger = logging.getLogger(__name__)


def select_grant(
    grants: Iterable[PermissionGrant],
    required_targets: Iterable[str],
    *,
    now: int,
    backend_key_public_id: str | None = None,
) -> PermissionGrant:
    """Pure selection over an already-loaded grant list.

    *grants* must be ordered most recently granted first; the first
    qualifying one wins.  Grants naming a different backend key are ignored
    entirely when *backend_key_public_id* is given.
    """
    required = normalize_targets(required_targets)
    candidates = [
        g for g in grants if backend_key_public_id is None or g.names_key(backend_key_public_id)
    ]
    if not candidates:
        raise NoMatchingGrantError(
            ResolutionCause.NO_GRANT_FOR_WALLET, "wallet has no grants for the backend key"
        )

    live = [g for g in candidates if not g.is_expired(now)]
    if not live:
        raise NoMatchingGrantError(
            ResolutionCause.ALL_GRANTS_EXPIRED,
            f"all {len(candidates)} grant(s) for the wallet have expired",
        )

    for grant in live:
        if grant.covers(required):
            return grant

    missing = sorted(required - frozenset().union(*(g.allowed_target_set for g in live)))
    raise NoMatchingGrantError(
        ResolutionCause.SCOPE_INSUFFICIENT,
        "no single live grant covers targets "
        + ", ".join(sorted(required))
        + (f" (never granted: {', '.join(missing)})" if missing else ""),
    )


class PermissionResolver:
    """Reads the grant store on every call; nothing is cached."""

    def __init__(self, grants: GrantStore) -> None:
        self._grants = grants

    async def resolve(
        self,
        wallet_address: str,
        required_targets: Iterable[str],
        *,
        backend_key_public_id: str | None = None,
        now: int | None = None,
    ) -> PermissionGrant:
        """Return the most recently granted live grant covering every target.

        Raises ``NoMatchingGrantError`` with cause ``no_grant_for_wallet``,
        ``all_grants_expired`` or ``scope_insufficient``.
        """
        wallet = normalize_address(wallet_address)
        grants = await self._grants.for_wallet(wallet)
        grant = select_grant(
            grants,
            required_targets,
            now=unix_now() if now is None else now,
            backend_key_public_id=backend_key_public_id,
        )
        logger.debug("Resolved grant %s for wallet %s", grant.id, wallet)
        return grant
