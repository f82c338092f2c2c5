"""Tests for PermissionGrant CRUD operations and model helpers."""

from __future__ import annotations

from datetime import timezone

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from delegex.db.crud.grants import get_grant, insert_grant, list_grants_for_wallet
from delegex.protocol.types import unix_now


async def test_insert_and_get(session, make_grant, wallet, token_a):
    grant = make_grant(wallet.address, "0xkey", grant_id="g1")
    await insert_grant(session, grant)
    await session.commit()

    stored = await get_grant(session, "g1")
    assert stored is not None
    assert stored.allowed_targets == [token_a]
    assert await get_grant(session, "missing") is None


async def test_duplicate_id_raises(engine, session, make_grant, wallet):
    await insert_grant(session, make_grant(wallet.address, "0xkey", grant_id="g1"))
    await session.commit()

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as second:
        with pytest.raises(IntegrityError):
            await insert_grant(second, make_grant(wallet.address, "0xkey", grant_id="g1"))
        await second.rollback()


async def test_list_for_wallet_newest_first(session, make_grant, wallet, other_wallet, earlier):
    await insert_grant(session, make_grant(wallet.address, "0xkey", grant_id="old", granted_at=earlier(10)))
    await insert_grant(session, make_grant(wallet.address, "0xkey", grant_id="new", granted_at=earlier(1)))
    await insert_grant(session, make_grant(other_wallet.address, "0xkey", grant_id="theirs"))
    await session.commit()

    grants = await list_grants_for_wallet(session, wallet.address.lower())
    assert [g.id for g in grants] == ["new", "old"]


async def test_granted_at_is_utc_aware(engine, session, make_grant, wallet):
    grant = make_grant(wallet.address, "0xkey", grant_id="g1")
    assert grant.granted_at.tzinfo is timezone.utc
    await insert_grant(session, grant)
    await session.commit()

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as fresh:
        stored = await get_grant(fresh, "g1")
    # SQLite drops the offset on read; the stored value is still UTC
    value = stored.granted_at
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    assert value == grant.granted_at


class TestModelHelpers:
    def test_expiry_boundary(self, make_grant, wallet):
        now = unix_now()
        grant = make_grant(wallet.address, "0xkey", expiry=now)
        assert grant.is_expired(now)
        assert not grant.is_expired(now - 1)

    def test_covers_is_case_insensitive(self, make_grant, wallet, token_a, token_b):
        grant = make_grant(wallet.address, "0xkey", targets=[token_a.upper().replace("0X", "0x"), token_b])
        assert grant.covers({token_a})
        assert grant.covers({token_a, token_b})
        assert not grant.covers({token_a, "0x" + "ee" * 20})

    def test_names_key(self, make_grant, wallet):
        grant = make_grant(wallet.address, "0xABCD")
        assert grant.names_key("0xabcd")
        assert not grant.names_key("0xabce")
