"""Shared fixtures for delegex server tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from delegex.protocol.crypto import sign_wallet_message
from delegex.protocol.types import unix_now
from delegex.server.app import create_app
from delegex.server.config import Settings


@pytest.fixture()
def settings(tmp_path, monkeypatch) -> Settings:
    """Settings backed by a temporary database and the in-memory relay."""
    monkeypatch.setenv("DELEGEX_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("DELEGEX_RELAY_URL", "memory://")
    monkeypatch.setenv("DELEGEX_CHAIN_ID", "11155931")
    monkeypatch.delenv("DELEGEX_SESSION_KEY", raising=False)
    monkeypatch.delenv("DELEGEX_SESSION_KEY_PATH", raising=False)
    return Settings()


@pytest.fixture()
def app(settings, relay, key_manager):
    """Create a server app wired to the test relay and P-256 backend key."""
    return create_app(settings, relay_transport=relay, key_manager=key_manager)


@pytest.fixture()
def client(app):
    """Return a TestClient for the app with lifespan triggered."""
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def link_wallet(client):
    """Run the challenge/sign/verify flow; returns a helper taking (account, identity, handle)."""

    def _link(account, identity="42", handle="alice"):
        resp = client.post("/verify/message", json={"identity": identity, "handle": handle})
        assert resp.status_code == 200, resp.text
        message = resp.json()["message"]
        resp = client.post(
            "/verify/signature",
            json={
                "address": account.address,
                "signature": sign_wallet_message(message, account.key),
                "message": message,
                "identity": identity,
                "handle": handle,
            },
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _link


@pytest.fixture()
def sync_grant(client, key_manager):
    """Post a grant for the deployment's backend key; returns the response JSON."""

    def _sync(wallet_address, targets, *, grant_id=None, expiry=None, **extra):
        payload = {
            "walletAddress": wallet_address,
            "backendKeyPublicId": key_manager.get_public_identifier(),
            "backendKeyType": "p256",
            "expiry": expiry if expiry is not None else unix_now() + 3600,
            "scope": {"allowedTargets": list(targets)},
        }
        if grant_id is not None:
            payload["grantId"] = grant_id
        payload.update(extra)
        resp = client.post("/permissions/sync", json=payload)
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _sync
