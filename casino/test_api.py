"""
API tests. Uses httpx AsyncClient with FastAPI's ASGI transport.

Covers:
- Registration and key rotation
- Auth boundaries (no key, wrong key, admin key on user endpoints)
- Full play → reveal → claim lifecycle via HTTP
- Claim errors mapped to status codes
- Liquidity deposit / withdraw
- Admin operations
"""

import asyncio
import os

import pytest
from httpx import ASGITransport, AsyncClient

# Set admin key before importing app
os.environ["CASINO_ADMIN_KEY"] = "test-admin-key"
os.environ["CASINO_STATE"] = "/tmp/casino_test_state.json"
os.environ["CASINO_INITIAL_CREDITS"] = "1000000000"

from casino.api import app
from casino.auth import AuthStore
from casino.clock import LogicalClock
from casino.house import Casino
from casino.models import reset_counters
from casino.oracle import LocalOracle


ADMIN_HEADERS = {"Authorization": "Bearer test-admin-key"}
STATE_FILE = "/tmp/casino_test_state.json"


@pytest.fixture
async def client():
    """Fresh app state for each test."""
    reset_counters()
    oracle = LocalOracle(secret=b"api-test-secret", seed=1)
    app.state.casino = Casino(oracle, clock=LogicalClock())
    app.state.auth_store = AuthStore()
    app.state.lock = asyncio.Lock()

    try:
        os.remove(STATE_FILE)
    except FileNotFoundError:
        pass

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _register(client: AsyncClient, username="alice") -> dict:
    resp = await client.post("/v1/auth/register", json={"username": username})
    assert resp.status_code == 200
    return _user_headers(resp.json()["api_key"])


def _user_headers(api_key: str) -> dict:
    return {"Authorization": f"Bearer {api_key}"}


async def _fund_vault(client: AsyncClient, amount="1000000000"):
    resp = await client.post("/v1/admin/fund", headers=ADMIN_HEADERS,
                             json={"username": "house",
                                   "amount": "10000000000"})
    assert resp.status_code == 200
    resp = await client.post("/v1/admin/vault", headers=ADMIN_HEADERS,
                             json={"house": "house", "amount": amount})
    assert resp.status_code == 200
    return resp.json()


async def _play_coinflip(client, headers, pick=1, draw=1, seed=1,
                         amount="10000000"):
    app.state.casino.oracle.force_draws(draw)
    resp = await client.post("/v1/oracle/seal", headers=headers,
                             json={"value": str(pick)})
    assert resp.status_code == 200
    return await client.post("/v1/games/coinflip/play", headers=headers,
                             json={"seed": seed, "amount": amount,
                                   "encrypted_choice":
                                       resp.json()["ciphertext"]})


async def _reveal(client, headers, bet_id) -> dict:
    resp = await client.post(f"/v1/bets/{bet_id}/reveal", headers=headers,
                             json={})
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["bets"] == 0
        assert data["accounts"] == 2        # the two pools


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestAuth:
    async def test_register_mints_credits(self, client):
        headers = await _register(client)
        resp = await client.get("/v1/me", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["username"] == "alice"
        assert data["balance"] == "1000000000"
        assert data["bets"] == []

    async def test_username_taken(self, client):
        await _register(client)
        resp = await client.post("/v1/auth/register",
                                 json={"username": "alice"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

    @pytest.mark.parametrize("username", ["", "pool:primary", "house",
                                          "x" * 41])
    async def test_invalid_username(self, client, username):
        resp = await client.post("/v1/auth/register",
                                 json={"username": username})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_username"

    async def test_rotate_key(self, client):
        old = await _register(client)
        resp = await client.post("/v1/auth/rotate", headers=old)
        assert resp.status_code == 200
        new = _user_headers(resp.json()["api_key"])

        assert (await client.get("/v1/me", headers=old)).status_code == 401
        assert (await client.get("/v1/me", headers=new)).status_code == 200

    async def test_register_persists_state(self, client):
        await _register(client)
        assert os.path.exists(STATE_FILE)


class TestAuthBoundaries:
    async def test_no_auth_on_protected(self, client):
        resp = await client.get("/v1/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "auth_required"

    async def test_bad_key(self, client):
        resp = await client.get("/v1/me", headers=_user_headers("nope"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_api_key"

    async def test_admin_key_rejected_on_user_endpoint(self, client):
        resp = await client.get("/v1/me", headers=ADMIN_HEADERS)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_api_key"

    async def test_operator_has_no_liquidity_position(self, client):
        resp = await client.post("/v1/liquidity/deposit",
                                 headers=ADMIN_HEADERS,
                                 json={"amount": "1000"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_api_key"

    async def test_user_key_rejected_on_admin_endpoint(self, client):
        headers = await _register(client)
        resp = await client.post("/v1/admin/fund", headers=headers,
                                 json={"username": "alice",
                                       "amount": "100"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "admin_required"

    async def test_public_endpoints_no_auth(self, client):
        assert (await client.get("/v1/health")).status_code == 200
        assert (await client.get("/v1/pool")).status_code == 200


# ---------------------------------------------------------------------------
# Games
# ---------------------------------------------------------------------------

class TestGameLifecycle:
    async def test_play_reveal_claim(self, client):
        await _fund_vault(client)
        headers = await _register(client)

        resp = await _play_coinflip(client, headers, pick=1, draw=1)
        assert resp.status_code == 200
        bet = resp.json()
        assert bet["game"] == "coinflip"
        assert bet["claimed"] is False
        assert bet["payout"] is None

        att = await _reveal(client, headers, bet["bet_id"])
        assert att["handle"] == bet["payout_handle"]

        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=headers, json=att)
        assert resp.status_code == 200
        data = resp.json()
        assert data["payout"] == "19700000"
        assert data["balance"] == str(1_000_000_000 - 10_000_000
                                      + 19_700_000)

        # Public bet detail reflects the claim
        resp = await client.get(f"/v1/bets/{bet['bet_id']}")
        assert resp.json()["claimed"] is True
        assert resp.json()["payout"] == "19700000"

        # Second claim is refused
        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=headers, json=att)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "already_claimed"

    async def test_slot_needs_no_choice(self, client):
        headers = await _register(client)
        app.state.casino.oracle.force_draws(3, 3, 7)
        resp = await client.post("/v1/games/slot/play", headers=headers,
                                 json={"seed": 1, "amount": "10000000"})
        assert resp.status_code == 200
        assert len(resp.json()["outcome_handles"]) == 3

    async def test_unknown_game(self, client):
        headers = await _register(client)
        resp = await client.post("/v1/games/poker/play", headers=headers,
                                 json={"seed": 1, "amount": "10000000"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "game_not_found"

    @pytest.mark.parametrize("amount, code", [
        ("9999999", "amount_too_small"),
        ("10000000001", "amount_too_large"),
        ("abc", "invalid_amount"),
        ("-5", "invalid_amount"),
    ])
    async def test_bet_amount_errors(self, client, amount, code):
        headers = await _register(client)
        resp = await _play_coinflip(client, headers, amount=amount)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == code

    async def test_missing_choice(self, client):
        headers = await _register(client)
        resp = await client.post("/v1/games/roulette/play", headers=headers,
                                 json={"seed": 1, "amount": "10000000"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "missing_choice"

    async def test_duplicate_seed(self, client):
        headers = await _register(client)
        assert (await _play_coinflip(client, headers)).status_code == 200
        resp = await _play_coinflip(client, headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_bet"

    async def test_bet_not_found(self, client):
        resp = await client.get("/v1/bets/999")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "bet_not_found"


class TestClaimErrors:
    async def test_tampered_plaintext(self, client):
        await _fund_vault(client)
        headers = await _register(client)
        bet = (await _play_coinflip(client, headers, draw=0)).json()
        att = await _reveal(client, headers, bet["bet_id"])
        att["plaintext"] = (19_700_000).to_bytes(16, "little").hex()

        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=headers, json=att)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_decryption_proof"

        me = (await client.get("/v1/me", headers=headers)).json()
        assert me["balance"] == str(1_000_000_000 - 10_000_000)

    async def test_not_bet_owner(self, client):
        alice = await _register(client, "alice")
        bob = await _register(client, "bob")
        bet = (await _play_coinflip(client, alice)).json()
        att = await _reveal(client, alice, bet["bet_id"])

        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=bob, json=att)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "not_bet_owner"

    async def test_reveal_by_other_player(self, client):
        alice = await _register(client, "alice")
        bob = await _register(client, "bob")
        bet = (await _play_coinflip(client, alice)).json()
        resp = await client.post(f"/v1/bets/{bet['bet_id']}/reveal",
                                 headers=bob, json={})
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "oracle_rejected"

    async def test_unfunded_vault(self, client):
        headers = await _register(client)
        bet = (await _play_coinflip(client, headers, draw=1)).json()
        att = await _reveal(client, headers, bet["bet_id"])
        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=headers, json=att)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "insufficient_vault_funds"

    async def test_bad_hex(self, client):
        headers = await _register(client)
        bet = (await _play_coinflip(client, headers)).json()
        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=headers,
                                 json={"handle": bet["payout_handle"],
                                       "plaintext": "zz", "signature": ""})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_hex"


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------

class TestLiquidity:
    async def test_deposit_accrue_withdraw(self, client):
        await _fund_vault(client)
        headers = await _register(client)

        resp = await client.post("/v1/liquidity/deposit", headers=headers,
                                 json={"amount": "1000000"})
        assert resp.status_code == 200
        assert resp.json()["principal"] == "1000000"

        app.state.casino.clock.set(6_307_200)
        resp = await client.get("/v1/liquidity/position", headers=headers)
        assert resp.json()["pending_yield"] == "5000"

        resp = await client.post("/v1/liquidity/withdraw", headers=headers,
                                 json={"amount": "1000000"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["payout"] == "1005000"
        assert data["position"]["principal"] == "0"
        assert data["position"]["accrued_yield"] == "0"

        pool = (await client.get("/v1/pool")).json()
        assert pool["total_deposits"] == "0"

    async def test_position_not_found(self, client):
        headers = await _register(client)
        resp = await client.get("/v1/liquidity/position", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "position_not_found"

    async def test_withdraw_more_than_principal(self, client):
        headers = await _register(client)
        await client.post("/v1/liquidity/deposit", headers=headers,
                          json={"amount": "1000"})
        resp = await client.post("/v1/liquidity/withdraw", headers=headers,
                                 json={"amount": "1001"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "amount_too_large"


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

class TestAdmin:
    async def test_fund(self, client):
        resp = await client.post("/v1/admin/fund", headers=ADMIN_HEADERS,
                                 json={"username": "house",
                                       "amount": "500"})
        assert resp.status_code == 200
        assert resp.json() == {"username": "house", "balance": "500"}

    async def test_vault(self, client):
        pool = await _fund_vault(client, amount="250000000")
        assert pool["primary_balance"] == "250000000"
        assert pool["backstop_balance"] == "250000000"
        assert pool["total_deposits"] == "0"

    async def test_vault_unknown_house(self, client):
        resp = await client.post("/v1/admin/vault", headers=ADMIN_HEADERS,
                                 json={"house": "house", "amount": "100"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "account_not_found"

    async def test_policy(self, client):
        resp = await client.post("/v1/admin/policy", headers=ADMIN_HEADERS,
                                 json={"house_edge_bps": 0,
                                       "yield_rate_bps": 800})
        assert resp.status_code == 200
        assert resp.json()["house_edge_bps"] == 0
        assert resp.json()["yield_rate_bps"] == 800

        await _fund_vault(client)
        headers = await _register(client)
        bet = (await _play_coinflip(client, headers)).json()
        att = await _reveal(client, headers, bet["bet_id"])
        resp = await client.post(f"/v1/bets/{bet['bet_id']}/claim",
                                 headers=headers, json=att)
        assert resp.json()["payout"] == "20000000"

    async def test_policy_out_of_bounds(self, client):
        resp = await client.post("/v1/admin/policy", headers=ADMIN_HEADERS,
                                 json={"house_edge_bps": 10_000,
                                       "yield_rate_bps": 500})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_policy"
