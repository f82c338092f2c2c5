"""Tests for the identity verification endpoints."""

from __future__ import annotations

from delegex.protocol.crypto import sign_wallet_message


class TestChallenge:
    def test_issue(self, client):
        resp = client.post("/verify/message", json={"identity": "42", "handle": "@alice"})
        assert resp.status_code == 200
        data = resp.json()
        assert "@alice (ID: 42)" in data["message"]
        assert data["challengeHash"].startswith("0x")
        assert data["expiresAt"] > 0

    def test_invalid_identity(self, client):
        resp = client.post("/verify/message", json={"identity": "", "handle": "alice"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_challenge"

    def test_missing_field(self, client):
        resp = client.post("/verify/message", json={"identity": "42"})
        assert resp.status_code == 422
        assert resp.json()["error"] == "validation_error"


class TestSignature:
    def test_link_and_status(self, client, link_wallet, wallet):
        data = link_wallet(wallet)
        assert data["success"] is True
        assert data["walletAddress"] == wallet.address

        status = client.get("/verify/status/42").json()
        assert status["linked"] is True
        assert status["walletAddress"] == wallet.address
        assert status["handle"] == "alice"

    def test_wrong_signer(self, client, wallet, other_wallet):
        message = client.post("/verify/message", json={"identity": "42", "handle": "alice"}).json()["message"]
        resp = client.post(
            "/verify/signature",
            json={
                "address": wallet.address,
                "signature": sign_wallet_message(message, other_wallet.key),
                "message": message,
                "identity": "42",
                "handle": "alice",
            },
        )
        assert resp.status_code == 401
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "signature_mismatch"
        assert client.get("/verify/status/42").json()["linked"] is False

    def test_replay(self, client, wallet):
        message = client.post("/verify/message", json={"identity": "42", "handle": "alice"}).json()["message"]
        payload = {
            "address": wallet.address,
            "signature": sign_wallet_message(message, wallet.key),
            "message": message,
            "identity": "42",
            "handle": "alice",
        }
        assert client.post("/verify/signature", json=payload).status_code == 200
        resp = client.post("/verify/signature", json=payload)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_challenge"

    def test_bad_address(self, client):
        resp = client.post(
            "/verify/signature",
            json={"address": "0x12", "signature": "0x", "message": "m", "identity": "42", "handle": "a"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_address"


class TestLinkLifecycle:
    def test_unlinked_status(self, client):
        assert client.get("/verify/status/999").json() == {
            "linked": False,
            "walletAddress": None,
            "handle": None,
            "verifiedAt": None,
        }

    def test_relink_and_history(self, client, link_wallet, wallet, other_wallet):
        link_wallet(wallet)
        link_wallet(other_wallet)
        history = client.get("/verify/history/42").json()
        assert history["identity"] == "42"
        assert [entry["active"] for entry in history["links"]] == [True, False]
        assert history["links"][0]["walletAddress"] == other_wallet.address

    def test_revoke(self, client, link_wallet, wallet):
        link_wallet(wallet)
        assert client.post("/verify/revoke", json={"identity": "42"}).json() == {"success": True}
        assert client.get("/verify/status/42").json()["linked"] is False
        (entry,) = client.get("/verify/history/42").json()["links"]
        assert entry["revokedAt"] is not None
        assert client.post("/verify/revoke", json={"identity": "42"}).json() == {"success": False}
