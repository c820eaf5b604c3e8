"""
Persistence layer. JSON snapshot + atomic writes.

The snapshot contains the complete state of the house:
  - treasury: accounts, transactions
  - ledger: bets and their handles
  - liquidity: pool aggregate, config, positions
  - policy, ID counters, logical clock
  - auth users
  - local oracle table (when the oracle is a LocalOracle; its secret is
    never written, it comes from configuration)

Save after every complete operation. On startup, load the snapshot.

Atomic write: write to .tmp, then os.replace. A crash mid-write
leaves the previous snapshot intact.
"""

import dataclasses
import json
import os

from casino.auth import AuthStore, User
from casino.clock import LogicalClock
from casino.house import Casino
from casino.ledger import BetLedger
from casino.models import (
    Account, Bet, LiquidityPool, LiquidityPoolConfig, LiquidityPosition,
    Policy, Transaction, _counters, game_kind_from_dict, game_kind_to_dict,
    reset_counters, set_counter,
)
from casino.oracle import OracleClient
from casino.treasury import Treasury


CURRENT_VERSION = 1


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _serialize_bet(bet: Bet) -> dict:
    d = dataclasses.asdict(bet)
    d["game_kind"] = game_kind_to_dict(bet.game_kind)
    return d


def _load_bet(d: dict) -> Bet:
    return Bet(
        id=d["id"],
        player=d["player"],
        game_kind=game_kind_from_dict(d["game_kind"]),
        seed=d["seed"],
        amount=d["amount"],
        timestamp=d["timestamp"],
        choice_handle=d["choice_handle"],
        payout_handle=d["payout_handle"],
        outcome_handles=d["outcome_handles"],
        claimed=d["claimed"],
        payout=d.get("payout"),
        claimed_at=d.get("claimed_at"),
        created_at=d["created_at"],
    )


def _serialize_auth(auth_store: AuthStore) -> dict:
    return {"users": [dataclasses.asdict(u)
                      for u in auth_store.users.values()]}


def _load_auth(auth_data: dict) -> AuthStore:
    store = AuthStore()
    for udata in auth_data.get("users", []):
        user = User(**udata)
        store.users[user.username] = user
        store.key_to_user[user.api_key_hash] = user
    return store


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def save_snapshot(casino: Casino, path: str,
                  auth_store: AuthStore | None = None) -> None:
    """
    Save complete house + auth state to a JSON file.
    Atomic: writes to .tmp then renames.
    """
    liquidity = casino.liquidity
    state = {
        "version": CURRENT_VERSION,
        "counters": dict(_counters),
        "clock": casino.clock.now(),
        "policy": dataclasses.asdict(casino.policy),
        "accounts": [dataclasses.asdict(acc)
                     for acc in casino.treasury.accounts.values()],
        "transactions": [dataclasses.asdict(tx)
                         for tx in casino.treasury.transactions],
        "bets": [_serialize_bet(b) for b in casino.ledger.bets.values()],
        "pool": dataclasses.asdict(liquidity.pool),
        "positions": [dataclasses.asdict(p)
                      for p in liquidity.positions.values()],
        "auth": _serialize_auth(auth_store) if auth_store else {"users": []},
    }
    if hasattr(casino.oracle, "export_state"):
        state["oracle"] = casino.oracle.export_state()

    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(state, f, indent=2)
    os.replace(tmp, path)


def load_snapshot(path: str, oracle: OracleClient,
                  clock=None) -> tuple[Casino, AuthStore]:
    """
    Load house + auth state from a JSON snapshot.
    Returns (casino, auth_store) ready to use, wired to `oracle`.
    """
    with open(path) as f:
        state = json.load(f)

    version = state.get("version", 1)
    if version > CURRENT_VERSION:
        raise ValueError(
            f"snapshot version {version} is newer than {CURRENT_VERSION}")

    # Restore ID counters
    reset_counters()
    for kind, value in state["counters"].items():
        set_counter(kind, value)

    if clock is None:
        clock = LogicalClock()
    if isinstance(clock, LogicalClock):
        clock.set(max(clock.now(), state.get("clock", 0)))

    # Restore treasury
    treasury = Treasury()
    treasury.accounts = {}
    for adata in state["accounts"]:
        acc = Account(**adata)
        treasury.accounts[acc.id] = acc
    treasury.transactions = [Transaction(**t) for t in state["transactions"]]

    # Restore ledger
    ledger = BetLedger()
    for bdata in state["bets"]:
        ledger.add(_load_bet(bdata))

    # Restore liquidity pool
    pdata = dict(state["pool"])
    pdata["config"] = LiquidityPoolConfig(**pdata["config"])
    pool = LiquidityPool(**pdata)

    casino = Casino(oracle, clock=clock, policy=Policy(**state["policy"]),
                    pool=pool, treasury=treasury, ledger=ledger)
    for posdata in state["positions"]:
        pos = LiquidityPosition(**posdata)
        casino.liquidity.positions[pos.depositor] = pos

    if "oracle" in state and hasattr(oracle, "load_state"):
        oracle.load_state(state["oracle"])

    auth_store = _load_auth(state.get("auth", {"users": []}))
    return casino, auth_store
