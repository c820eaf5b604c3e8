"""
Outcome oracle. The confidential-compute capability the games run on.

The engines never see a plaintext they haven't verified. They ask the
oracle to encrypt constants, draw randoms, combine handles, and grant
players the right to decrypt; later a player brings back an attested
plaintext and the oracle says whether it really opens the handle.

OracleClient is the seam. Two implementations:
  LocalOracle      in-process and deterministic. Keeps plaintexts in a
                     private table, signs attestations with HMAC-SHA256,
                     and can be told which draws to produce (tests).
  HttpOracleClient JSON over HTTP to a remote oracle service.

Handles are opaque u128 keys. Two equal plaintexts get different
handles; handle equality says nothing about plaintext equality.
"""

import hashlib
import hmac
import logging
import os
import random
import secrets
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Optional

import httpx

from casino.errors import OracleRejected, OracleUnavailable
from casino.models import Handle
from casino.payout_math import U128_MAX, encode_plaintext

logger = logging.getLogger(__name__)


@dataclass
class Attestation:
    """An oracle-signed opening of a handle, as handed to its grantee."""
    handle: Handle
    plaintext: bytes
    signature: bytes


class OracleClient(ABC):
    """
    Capability interface. Every call is synchronous and either returns
    a new handle or raises OracleUnavailable / OracleRejected.
    `principal` identifies the caller the operation runs on behalf of.
    """

    @abstractmethod
    def encrypt(self, value: int, principal: str) -> Handle:
        """Encrypt a known plaintext."""

    @abstractmethod
    def ingest(self, ciphertext: bytes, principal: str) -> Handle:
        """Accept a ciphertext the player produced client-side."""

    @abstractmethod
    def random_bounded(self, bound: int, principal: str) -> Handle:
        """Uniform encrypted value in [0, bound)."""

    @abstractmethod
    def add(self, a: Handle, b: Handle, principal: str) -> Handle: ...

    @abstractmethod
    def sub(self, a: Handle, b: Handle, principal: str) -> Handle: ...

    @abstractmethod
    def mul(self, a: Handle, b: Handle, principal: str) -> Handle: ...

    @abstractmethod
    def rem(self, a: Handle, b: Handle, principal: str) -> Handle: ...

    @abstractmethod
    def eq(self, a: Handle, b: Handle, principal: str) -> Handle:
        """Encrypted boolean a == b."""

    @abstractmethod
    def ge(self, a: Handle, b: Handle, principal: str) -> Handle:
        """Encrypted boolean a >= b."""

    @abstractmethod
    def select(self, cond: Handle, a: Handle, b: Handle,
               principal: str) -> Handle:
        """cond ? a : b, without revealing cond."""

    @abstractmethod
    def grant_decrypt(self, handle: Handle, principal: str) -> None:
        """Let `principal` decrypt `handle` off-chain."""

    @abstractmethod
    def verify_decryption(self, handle: Handle, plaintext: bytes,
                          principal: str, signature: bytes) -> bool:
        """
        True only if the oracle's signature attests that `plaintext`
        opens `handle` for `principal`. Forged or mismatched input is
        False. Unknown handles or ungranted principals raise
        OracleRejected.
        """

    def decrypt(self, handle: Handle, principal: str) -> Attestation:
        """Attested off-chain decryption for a granted principal."""
        raise OracleRejected(
            f"{type(self).__name__} does not serve decryptions")


# ---------------------------------------------------------------------------
# Local oracle
# ---------------------------------------------------------------------------

_MOD = U128_MAX + 1
_CIPHERTEXT_LEN = 32        # 16-byte nonce + 16-byte masked value


class LocalOracle(OracleClient):
    """
    Deterministic in-process oracle.

    secret: HMAC key for handles, sealing, and attestations.
    seed: seeds the RNG behind random_bounded.
    force_draws(): queue exact draws (each reduced mod the bound) ahead
    of the RNG, so tests can pin every outcome.
    """

    def __init__(self, secret: Optional[bytes] = None,
                 seed: Optional[int] = None):
        self.secret = secret or secrets.token_bytes(32)
        self.rng = random.Random(seed)
        self.values: dict[Handle, tuple[int, bool]] = {}   # handle -> (value, is_bool)
        self.grants: dict[Handle, set[str]] = {}
        self.counter = 0
        self.forced: deque[int] = deque()

    # --- helpers -------------------------------------------------------

    def _mac(self, *parts: bytes) -> bytes:
        return hmac.new(self.secret, b"".join(parts), hashlib.sha256).digest()

    def _issue(self, value: int, principal: str, is_bool: bool = False
               ) -> Handle:
        self.counter += 1
        digest = self._mac(b"handle", self.counter.to_bytes(16, "big"))
        handle = int.from_bytes(digest[:16], "big") or 1
        self.values[handle] = (value % _MOD, is_bool)
        self.grants[handle] = set()
        logger.debug("issued handle %d for %s", handle, principal)
        return handle

    def _value(self, handle: Handle, is_bool: bool = False) -> int:
        entry = self.values.get(handle)
        if entry is None:
            raise OracleRejected(f"unknown handle {handle}")
        value, kind = entry
        if kind != is_bool:
            want = "boolean" if is_bool else "integer"
            raise OracleRejected(f"handle {handle} is not an {want}")
        return value

    def force_draws(self, *draws: int) -> None:
        self.forced.extend(draws)

    def seal(self, value: int) -> bytes:
        """Client-side encryption of a choice, as a player's wallet would."""
        nonce = secrets.token_bytes(16)
        pad = self._mac(b"seal", nonce)[:16]
        body = bytes(x ^ y for x, y in zip(encode_plaintext(value % _MOD), pad))
        return nonce + body

    def _sign(self, handle: Handle, plaintext: bytes, principal: str) -> bytes:
        return self._mac(b"attest", handle.to_bytes(16, "big"),
                         plaintext, principal.encode())

    def _plaintext(self, handle: Handle) -> bytes:
        value, is_bool = self.values[handle]
        return bytes([value]) if is_bool else encode_plaintext(value)

    # --- capability ----------------------------------------------------

    def encrypt(self, value: int, principal: str) -> Handle:
        if value < 0:
            raise OracleRejected(f"can't encrypt negative value {value}")
        return self._issue(value, principal)

    def ingest(self, ciphertext: bytes, principal: str) -> Handle:
        if len(ciphertext) != _CIPHERTEXT_LEN:
            raise OracleRejected(
                f"ciphertext must be {_CIPHERTEXT_LEN} bytes, "
                f"got {len(ciphertext)}")
        nonce, body = ciphertext[:16], ciphertext[16:]
        pad = self._mac(b"seal", nonce)[:16]
        value = int.from_bytes(bytes(x ^ y for x, y in zip(body, pad)),
                               "little")
        return self._issue(value, principal)

    def random_bounded(self, bound: int, principal: str) -> Handle:
        if bound <= 0:
            raise OracleRejected(f"random bound must be positive, got {bound}")
        if self.forced:
            draw = self.forced.popleft() % bound
        else:
            draw = self.rng.getrandbits(128) % bound
        return self._issue(draw, principal)

    def add(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._issue(self._value(a) + self._value(b), principal)

    def sub(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._issue(self._value(a) - self._value(b), principal)

    def mul(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._issue(self._value(a) * self._value(b), principal)

    def rem(self, a: Handle, b: Handle, principal: str) -> Handle:
        divisor = self._value(b)
        if divisor == 0:
            raise OracleRejected("remainder by zero")
        return self._issue(self._value(a) % divisor, principal)

    def eq(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._issue(int(self._value(a) == self._value(b)), principal,
                           is_bool=True)

    def ge(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._issue(int(self._value(a) >= self._value(b)), principal,
                           is_bool=True)

    def select(self, cond: Handle, a: Handle, b: Handle,
               principal: str) -> Handle:
        chosen = self._value(a) if self._value(cond, is_bool=True) else \
            self._value(b)
        return self._issue(chosen, principal)

    def grant_decrypt(self, handle: Handle, principal: str) -> None:
        if handle not in self.values:
            raise OracleRejected(f"unknown handle {handle}")
        self.grants[handle].add(principal)

    def decrypt(self, handle: Handle, principal: str) -> Attestation:
        if handle not in self.values:
            raise OracleRejected(f"unknown handle {handle}")
        if principal not in self.grants[handle]:
            raise OracleRejected(
                f"{principal} may not decrypt handle {handle}")
        plaintext = self._plaintext(handle)
        return Attestation(handle=handle, plaintext=plaintext,
                           signature=self._sign(handle, plaintext, principal))

    def verify_decryption(self, handle: Handle, plaintext: bytes,
                          principal: str, signature: bytes) -> bool:
        if handle not in self.values:
            raise OracleRejected(f"unknown handle {handle}")
        if principal not in self.grants[handle]:
            raise OracleRejected(
                f"{principal} was never granted handle {handle}")
        expected = self._sign(handle, plaintext, principal)
        if not hmac.compare_digest(expected, bytes(signature)):
            return False
        return plaintext == self._plaintext(handle)

    # --- snapshots -----------------------------------------------------

    def export_state(self) -> dict:
        """Everything but the secret, which comes from configuration."""
        return {
            "counter": self.counter,
            "values": {str(h): [v, b] for h, (v, b) in self.values.items()},
            "grants": {str(h): sorted(p) for h, p in self.grants.items()},
            "forced": list(self.forced),
        }

    def load_state(self, state: dict) -> None:
        self.counter = state["counter"]
        self.values = {int(h): (v, bool(b))
                       for h, (v, b) in state["values"].items()}
        self.grants = {int(h): set(p) for h, p in state["grants"].items()}
        self.forced = deque(state.get("forced", []))


# ---------------------------------------------------------------------------
# Remote oracle
# ---------------------------------------------------------------------------

class HttpOracleClient(OracleClient):
    """
    Client for a remote oracle service.

    POST {base_url}/v1/{operation} with a JSON body; handles travel as
    decimal strings, bytes as hex. Transport failures and 5xx responses
    raise OracleUnavailable, 4xx responses raise OracleRejected. There is
    no retry; callers decide.
    """

    def __init__(self, base_url: str, api_key: str = "",
                 timeout: float = 10.0,
                 transport: Optional[httpx.BaseTransport] = None):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(base_url=base_url, headers=headers,
                                   timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def _call(self, operation: str, payload: dict) -> dict:
        logger.debug("oracle %s %s", operation, payload)
        try:
            resp = self.client.post(f"/v1/{operation}", json=payload)
        except httpx.TransportError as e:
            raise OracleUnavailable(f"oracle {operation}: {e}") from e
        if resp.status_code >= 500:
            raise OracleUnavailable(
                f"oracle {operation}: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise OracleRejected(
                f"oracle {operation}: HTTP {resp.status_code} {resp.text}")
        return resp.json()

    def _handle(self, operation: str, payload: dict) -> Handle:
        data = self._call(operation, payload)
        try:
            return int(data["handle"])
        except (KeyError, TypeError, ValueError) as e:
            raise OracleRejected(
                f"oracle {operation}: malformed response {data}") from e

    def _binary(self, operation: str, a: Handle, b: Handle,
                principal: str) -> Handle:
        return self._handle(operation, {"a": str(a), "b": str(b),
                                        "principal": principal})

    def encrypt(self, value: int, principal: str) -> Handle:
        return self._handle("encrypt", {"value": str(value),
                                        "principal": principal})

    def ingest(self, ciphertext: bytes, principal: str) -> Handle:
        return self._handle("ingest", {"ciphertext": ciphertext.hex(),
                                       "principal": principal})

    def random_bounded(self, bound: int, principal: str) -> Handle:
        return self._handle("random", {"bound": str(bound),
                                       "principal": principal})

    def add(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._binary("add", a, b, principal)

    def sub(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._binary("sub", a, b, principal)

    def mul(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._binary("mul", a, b, principal)

    def rem(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._binary("rem", a, b, principal)

    def eq(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._binary("eq", a, b, principal)

    def ge(self, a: Handle, b: Handle, principal: str) -> Handle:
        return self._binary("ge", a, b, principal)

    def select(self, cond: Handle, a: Handle, b: Handle,
               principal: str) -> Handle:
        return self._handle("select", {"cond": str(cond), "a": str(a),
                                       "b": str(b), "principal": principal})

    def grant_decrypt(self, handle: Handle, principal: str) -> None:
        self._call("allow", {"handle": str(handle), "principal": principal})

    def decrypt(self, handle: Handle, principal: str) -> Attestation:
        data = self._call("decrypt", {"handle": str(handle),
                                      "principal": principal})
        try:
            return Attestation(handle=handle,
                               plaintext=bytes.fromhex(data["plaintext"]),
                               signature=bytes.fromhex(data["signature"]))
        except (KeyError, TypeError, ValueError) as e:
            raise OracleRejected(
                f"oracle decrypt: malformed response {data}") from e

    def verify_decryption(self, handle: Handle, plaintext: bytes,
                          principal: str, signature: bytes) -> bool:
        data = self._call("verify", {
            "handle": str(handle),
            "plaintext": plaintext.hex(),
            "signature": signature.hex(),
            "principal": principal,
        })
        return data.get("valid") is True


def load_or_create_secret(key_path: str) -> bytes:
    """
    LocalOracle secret kept beside the state file, so attestations made
    by one process verify in the next. Created 0600 on first use.
    """
    try:
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError:
        with open(key_path, "rb") as f:
            secret = f.read()
        if not secret:
            raise ValueError(f"oracle key file {key_path} is empty")
        return secret
    secret = secrets.token_bytes(32)
    with os.fdopen(fd, "wb") as f:
        f.write(secret)
    logger.info("created oracle key file %s", key_path)
    return secret


def oracle_from_env(key_path: Optional[str] = None) -> OracleClient:
    """
    HttpOracleClient when CASINO_ORACLE_URL is set, else a LocalOracle
    keyed by CASINO_ORACLE_SECRET or, failing that, the key file.
    """
    url = os.environ.get("CASINO_ORACLE_URL", "")
    if url:
        return HttpOracleClient(url,
                                api_key=os.environ.get("CASINO_ORACLE_KEY", ""))
    secret = os.environ.get("CASINO_ORACLE_SECRET", "")
    if secret:
        return LocalOracle(secret=secret.encode())
    if key_path is None:
        logger.warning("CASINO_ORACLE_SECRET not set; attestations will not "
                       "survive a restart")
        return LocalOracle()
    return LocalOracle(secret=load_or_create_secret(key_path))
