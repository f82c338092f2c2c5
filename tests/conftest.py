"""Shared test fixtures for delegex tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from eth_account import Account

from delegex.core.resolver import PermissionResolver
from delegex.core.session_key import SessionKeyManager
from delegex.db.engine import create_async_engine_from_url
from delegex.db.models import PermissionGrant
from delegex.db.session import async_session_factory, create_tables
from delegex.db.stores import GrantStore, LinkStore
from delegex.protocol.types import KeyType, unix_now, utc_now
from delegex.relay.memory import InMemoryRelay

# Deterministic key material (never use outside tests)
WALLET_SECRET = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
OTHER_WALLET_SECRET = "0x" + "33" * 32
BACKEND_P256_SECRET = "0x" + "11" * 32
BACKEND_K1_SECRET = "0x" + "22" * 32

TOKEN_A = "0x" + "a1" * 20
TOKEN_B = "0x" + "b2" * 20
ROUTER = "0x" + "c3" * 20
RECIPIENT = "0x" + "d4" * 20


@pytest.fixture()
def wallet():
    """The user's wallet account (eth-account ``LocalAccount``)."""
    return Account.from_key(WALLET_SECRET)


@pytest.fixture()
def other_wallet():
    return Account.from_key(OTHER_WALLET_SECRET)


@pytest.fixture()
def token_a() -> str:
    return TOKEN_A


@pytest.fixture()
def token_b() -> str:
    return TOKEN_B


@pytest.fixture()
def router() -> str:
    return ROUTER


@pytest.fixture()
def recipient() -> str:
    return RECIPIENT


@pytest.fixture()
def backend_secret() -> str:
    return BACKEND_P256_SECRET


@pytest.fixture()
def key_manager() -> SessionKeyManager:
    """P-256 backend session key manager."""
    return SessionKeyManager.from_hex(BACKEND_P256_SECRET, KeyType.P256)


@pytest.fixture()
def k1_key_manager() -> SessionKeyManager:
    """secp256k1 backend session key manager."""
    return SessionKeyManager.from_hex(BACKEND_K1_SECRET, KeyType.SECP256K1)


@pytest.fixture()
def relay() -> InMemoryRelay:
    return InMemoryRelay()


@pytest.fixture
async def store_engine(tmp_path):
    """File-backed SQLite engine so each store operation gets its own connection."""
    eng = create_async_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(store_engine):
    return async_session_factory(store_engine)


@pytest.fixture
def link_store(session_factory) -> LinkStore:
    return LinkStore(session_factory)


@pytest.fixture
def grant_store(session_factory) -> GrantStore:
    return GrantStore(session_factory)


@pytest.fixture
def resolver(grant_store) -> PermissionResolver:
    return PermissionResolver(grant_store)


def _make_grant(
    wallet_address: str,
    public_id: str,
    *,
    grant_id: str = "grant-1",
    targets: list[str] | None = None,
    expiry: int | None = None,
    granted_at: datetime | None = None,
    key_type: str = "p256",
    spend_limits: list[dict] | None = None,
) -> PermissionGrant:
    """Build an unsaved grant; defaults to one hour of validity over TOKEN_A."""
    return PermissionGrant(
        id=grant_id,
        wallet_address=wallet_address,
        wallet_address_norm=wallet_address.lower(),
        backend_key_public_id=public_id,
        backend_key_type=key_type,
        expiry=expiry if expiry is not None else unix_now() + 3600,
        allowed_targets=list(targets if targets is not None else [TOKEN_A]),
        spend_limits=list(spend_limits or []),
        granted_at=granted_at or utc_now(),
    )


@pytest.fixture()
def make_grant():
    """Fixture that returns the grant builder helper."""
    return _make_grant


@pytest.fixture()
def earlier():
    """Returns ``utc_now() - minutes``, for ordering ``granted_at``."""

    def _earlier(minutes: int) -> datetime:
        return utc_now() - timedelta(minutes=minutes)

    return _earlier
