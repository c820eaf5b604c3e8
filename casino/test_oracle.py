"""
Oracle tests. LocalOracle directly; HttpOracleClient against an
httpx.MockTransport, including a full game played through a mock
oracle service backed by a LocalOracle.
"""

import json
import os
import stat

import httpx
import pytest

from casino.clock import LogicalClock
from casino.errors import OracleRejected, OracleUnavailable
from casino.house import Casino
from casino.models import BinaryChoice, reset_counters
from casino.oracle import (
    HttpOracleClient, LocalOracle, load_or_create_secret, oracle_from_env,
)
from casino.payout_math import parse_plaintext


SECRET = b"test-oracle-secret"


# ---------------------------------------------------------------------------
# LocalOracle
# ---------------------------------------------------------------------------

class TestLocalOracle:

    def test_equal_plaintexts_get_distinct_handles(self):
        oracle = LocalOracle(secret=SECRET)
        a = oracle.encrypt(5, "alice")
        b = oracle.encrypt(5, "alice")
        assert a != b

    def test_sealed_choice_round_trip(self):
        oracle = LocalOracle(secret=SECRET)
        handle = oracle.ingest(oracle.seal(36), "alice")
        oracle.grant_decrypt(handle, "alice")
        assert parse_plaintext(oracle.decrypt(handle, "alice").plaintext) == 36

    def test_decrypt_needs_grant(self):
        oracle = LocalOracle(secret=SECRET)
        handle = oracle.encrypt(1, "alice")
        with pytest.raises(OracleRejected):
            oracle.decrypt(handle, "alice")
        with pytest.raises(OracleRejected):
            oracle.verify_decryption(handle, b"\x01", "alice", b"")

    def test_verify(self):
        oracle = LocalOracle(secret=SECRET)
        handle = oracle.encrypt(7, "alice")
        oracle.grant_decrypt(handle, "alice")
        att = oracle.decrypt(handle, "alice")
        assert oracle.verify_decryption(handle, att.plaintext, "alice",
                                        att.signature)
        assert not oracle.verify_decryption(handle, b"\x08", "alice",
                                            att.signature)
        # A different key never verifies
        other = LocalOracle(secret=b"someone-else")
        other.load_state(oracle.export_state())
        assert not other.verify_decryption(handle, att.plaintext, "alice",
                                           att.signature)

    def test_arithmetic_and_comparisons(self):
        oracle = LocalOracle(secret=SECRET)
        a = oracle.encrypt(10, "p")
        b = oracle.encrypt(3, "p")
        results = {
            "add": oracle.add(a, b, "p"),
            "sub": oracle.sub(a, b, "p"),
            "mul": oracle.mul(a, b, "p"),
            "rem": oracle.rem(a, b, "p"),
        }
        for handle in results.values():
            oracle.grant_decrypt(handle, "p")
        opened = {k: parse_plaintext(oracle.decrypt(h, "p").plaintext)
                  for k, h in results.items()}
        assert opened == {"add": 13, "sub": 7, "mul": 30, "rem": 1}

        ge = oracle.ge(a, b, "p")
        picked = oracle.select(ge, a, b, "p")
        oracle.grant_decrypt(picked, "p")
        assert parse_plaintext(oracle.decrypt(picked, "p").plaintext) == 10

    def test_rejections(self):
        oracle = LocalOracle(secret=SECRET)
        a = oracle.encrypt(1, "p")
        zero = oracle.encrypt(0, "p")
        with pytest.raises(OracleRejected):
            oracle.rem(a, zero, "p")
        with pytest.raises(OracleRejected):
            oracle.select(a, a, a, "p")         # not a boolean
        with pytest.raises(OracleRejected):
            oracle.add(a, 12345, "p")           # unknown handle
        with pytest.raises(OracleRejected):
            oracle.ingest(b"too short", "p")
        with pytest.raises(OracleRejected):
            oracle.random_bounded(0, "p")

    def test_forced_draws(self):
        oracle = LocalOracle(secret=SECRET, seed=1)
        oracle.force_draws(5, 40)
        handles = [oracle.random_bounded(37, "p") for _ in range(2)]
        for h in handles:
            oracle.grant_decrypt(h, "p")
        assert [parse_plaintext(oracle.decrypt(h, "p").plaintext)
                for h in handles] == [5, 3]

    def test_state_round_trip(self):
        oracle = LocalOracle(secret=SECRET)
        handle = oracle.encrypt(99, "p")
        oracle.grant_decrypt(handle, "p")
        oracle.force_draws(4)

        restored = LocalOracle(secret=SECRET)
        restored.load_state(json.loads(json.dumps(oracle.export_state())))
        assert parse_plaintext(restored.decrypt(handle, "p").plaintext) == 99
        assert restored.encrypt(1, "p") == oracle.encrypt(1, "p")


class TestOracleKeyFile:

    @pytest.fixture(autouse=True)
    def _no_oracle_env(self, monkeypatch):
        monkeypatch.delenv("CASINO_ORACLE_URL", raising=False)
        monkeypatch.delenv("CASINO_ORACLE_SECRET", raising=False)

    def test_key_created_private_and_reused(self, tmp_path):
        key_path = str(tmp_path / "state.json.key")
        first = load_or_create_secret(key_path)
        assert len(first) == 32
        assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600
        assert load_or_create_secret(key_path) == first

    def test_attestation_verifies_in_a_new_oracle(self, tmp_path):
        key_path = str(tmp_path / "state.json.key")
        oracle = oracle_from_env(key_path=key_path)
        handle = oracle.encrypt(42, "alice")
        oracle.grant_decrypt(handle, "alice")
        att = oracle.decrypt(handle, "alice")

        restarted = oracle_from_env(key_path=key_path)
        restarted.load_state(oracle.export_state())
        assert restarted.verify_decryption(handle, att.plaintext, "alice",
                                           att.signature)

    def test_env_secret_wins_over_key_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CASINO_ORACLE_SECRET", "from-env")
        key_path = tmp_path / "state.json.key"
        oracle = oracle_from_env(key_path=str(key_path))
        assert oracle.secret == b"from-env"
        assert not key_path.exists()

    def test_empty_key_file_is_refused(self, tmp_path):
        key_path = tmp_path / "state.json.key"
        key_path.write_bytes(b"")
        with pytest.raises(ValueError):
            load_or_create_secret(str(key_path))


# ---------------------------------------------------------------------------
# HttpOracleClient
# ---------------------------------------------------------------------------

def oracle_service(local: LocalOracle):
    """MockTransport handler that serves the wire protocol from `local`."""

    def handler(request: httpx.Request) -> httpx.Response:
        op = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        p = body.get("principal", "")
        try:
            if op == "encrypt":
                h = local.encrypt(int(body["value"]), p)
            elif op == "ingest":
                h = local.ingest(bytes.fromhex(body["ciphertext"]), p)
            elif op == "random":
                h = local.random_bounded(int(body["bound"]), p)
            elif op in ("add", "sub", "mul", "rem", "eq", "ge"):
                h = getattr(local, op)(int(body["a"]), int(body["b"]), p)
            elif op == "select":
                h = local.select(int(body["cond"]), int(body["a"]),
                                 int(body["b"]), p)
            elif op == "allow":
                local.grant_decrypt(int(body["handle"]), p)
                return httpx.Response(200, json={})
            elif op == "decrypt":
                att = local.decrypt(int(body["handle"]), p)
                return httpx.Response(200, json={
                    "plaintext": att.plaintext.hex(),
                    "signature": att.signature.hex(),
                })
            elif op == "verify":
                valid = local.verify_decryption(
                    int(body["handle"]), bytes.fromhex(body["plaintext"]),
                    p, bytes.fromhex(body["signature"]))
                return httpx.Response(200, json={"valid": valid})
            else:
                return httpx.Response(404, json={"error": op})
        except OracleRejected as e:
            return httpx.Response(400, json={"error": str(e)})
        return httpx.Response(200, json={"handle": str(h)})

    return handler


class TestHttpOracleClient:

    def test_request_shape(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, json.loads(request.content),
                         request.headers.get("authorization")))
            return httpx.Response(200, json={"handle": "42"})

        client = HttpOracleClient("http://oracle.test", api_key="k",
                                  transport=httpx.MockTransport(handler))
        assert client.encrypt(7, "alice") == 42
        assert client.eq(1, 2, "alice") == 42
        assert seen == [
            ("/v1/encrypt", {"value": "7", "principal": "alice"},
             "Bearer k"),
            ("/v1/eq", {"a": "1", "b": "2", "principal": "alice"},
             "Bearer k"),
        ]

    def test_server_error_is_unavailable(self):
        client = HttpOracleClient(
            "http://oracle.test",
            transport=httpx.MockTransport(lambda r: httpx.Response(503)))
        with pytest.raises(OracleUnavailable):
            client.random_bounded(2, "alice")

    def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = HttpOracleClient("http://oracle.test",
                                  transport=httpx.MockTransport(handler))
        with pytest.raises(OracleUnavailable):
            client.encrypt(1, "alice")

    def test_client_error_is_rejected(self):
        client = HttpOracleClient(
            "http://oracle.test",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(400, json={"error": "nope"})))
        with pytest.raises(OracleRejected):
            client.grant_decrypt(1, "alice")

    def test_malformed_handle_is_rejected(self):
        client = HttpOracleClient(
            "http://oracle.test",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"nothing": True})))
        with pytest.raises(OracleRejected):
            client.encrypt(1, "alice")

    @pytest.mark.parametrize("body", [
        {},
        {"plaintext": "zz", "signature": ""},
        {"plaintext": None, "signature": "00"},
    ])
    def test_malformed_attestation_is_rejected(self, body):
        client = HttpOracleClient(
            "http://oracle.test",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json=body)))
        with pytest.raises(OracleRejected):
            client.decrypt(1, "alice")

    def test_verify_requires_explicit_true(self):
        client = HttpOracleClient(
            "http://oracle.test",
            transport=httpx.MockTransport(
                lambda r: httpx.Response(200, json={"valid": "yes"})))
        assert client.verify_decryption(1, b"\x00", "alice", b"") is False

    def test_game_through_remote_oracle(self):
        reset_counters()
        local = LocalOracle(secret=SECRET)
        client = HttpOracleClient(
            "http://oracle.test",
            transport=httpx.MockTransport(oracle_service(local)))
        casino = Casino(client, clock=LogicalClock())
        casino.fund("alice", 1_000_000_000)
        casino.fund("pool:primary", 100_000_000)

        local.force_draws(1)
        bet = casino.play("alice", BinaryChoice(), 1, 10_000_000,
                          local.seal(1))
        att = casino.reveal(bet.id, "alice")
        payout = casino.claim(bet.id, att.handle, att.plaintext,
                              att.signature)

        assert payout == 19_700_000
        assert casino.treasury.balance("alice") == 1_009_700_000
        client.close()
