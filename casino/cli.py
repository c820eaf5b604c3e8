#!/usr/bin/env python3
"""
Casino engine CLI. Every invocation: lock → load → execute → save → unlock.

Usage:
    python3 -m casino.cli fund PRINCIPAL AMOUNT
    python3 -m casino.cli init-vault HOUSE AMOUNT
    python3 -m casino.cli play PLAYER GAME SEED AMOUNT [--choice N]
    python3 -m casino.cli reveal BET_ID PLAYER [--handle H]
    python3 -m casino.cli claim BET_ID PLAYER HANDLE PLAINTEXT SIGNATURE
    python3 -m casino.cli deposit DEPOSITOR AMOUNT
    python3 -m casino.cli withdraw DEPOSITOR AMOUNT
    python3 -m casino.cli set-policy HOUSE_EDGE_BPS YIELD_RATE_BPS
    python3 -m casino.cli bet BET_ID
    python3 -m casino.cli balance PRINCIPAL
    python3 -m casino.cli position DEPOSITOR
    python3 -m casino.cli pool

Output: JSON, one line. {"ok": true, ...} or {"ok": false, "code": "...", "error": "..."}
State: CASINO_STATE env var, default ./casino_state.json
Oracle key: CASINO_ORACLE_SECRET, else STATE.key (created 0600 on first run)
Time: --now T moves the logical clock forward to T before the command.
Bytes (plaintexts, signatures) are hex.
"""

import argparse
import dataclasses
import fcntl
import json
import logging
import os
import sys
from contextlib import contextmanager

from casino.clock import LogicalClock
from casino.house import Casino
from casino.models import GAME_KINDS, reset_counters
from casino.oracle import oracle_from_env
from casino.persistence import save_snapshot, load_snapshot


STATE_PATH = os.environ.get("CASINO_STATE", "./casino_state.json")


@contextmanager
def file_lock(path):
    """Exclusive file lock. Prevents concurrent CLI invocations from corrupting state."""
    lock_path = path + ".lock"
    f = open(lock_path, "w")
    try:
        fcntl.flock(f, fcntl.LOCK_EX)
        yield
    finally:
        fcntl.flock(f, fcntl.LOCK_UN)
        f.close()


def load_or_create(path, oracle=None):
    oracle = oracle or oracle_from_env(key_path=path + ".key")
    if os.path.exists(path):
        casino, auth_store = load_snapshot(path, oracle, clock=LogicalClock())
        return casino, auth_store
    reset_counters()
    return Casino(oracle, clock=LogicalClock()), None


def reply(data):
    print(json.dumps(data))


def _bet(bet):
    return {"bet_id": bet.id, "player": bet.player,
            "game": bet.game_kind.tag,
            "params": dataclasses.asdict(bet.game_kind),
            "seed": bet.seed, "amount": str(bet.amount),
            "timestamp": bet.timestamp,
            "payout_handle": str(bet.payout_handle),
            "outcome_handles": [str(h) for h in bet.outcome_handles],
            "claimed": bet.claimed,
            "payout": None if bet.payout is None else str(bet.payout)}


def _position(casino, pos):
    return {"depositor": pos.depositor, "principal": str(pos.principal),
            "accrued_yield": str(pos.accrued_yield),
            "pending_yield": str(casino.liquidity.preview(pos.depositor)),
            "deposit_time": pos.deposit_time,
            "last_accrual_time": pos.last_accrual_time}


def cmd_fund(casino, args):
    balance = casino.fund(args.principal, int(args.amount))
    return {"ok": True, "principal": args.principal, "balance": str(balance)}


def cmd_init_vault(casino, args):
    casino.initialize_vault(args.house, int(args.amount))
    return cmd_pool(casino, args)


def cmd_play(casino, args):
    kind_cls = GAME_KINDS.get(args.game)
    if kind_cls is None:
        return {"ok": False, "code": "game_not_found",
                "error": f"unknown game {args.game}"}
    choice = None
    if args.choice is not None:
        # Operator tooling: seal on the player's behalf
        choice = casino.oracle.seal(args.choice)
    bet = casino.play(args.player, kind_cls(), args.seed, int(args.amount),
                      choice)
    return {"ok": True, **_bet(bet)}


def cmd_reveal(casino, args):
    handle = None if args.handle is None else int(args.handle)
    att = casino.reveal(args.bet_id, args.player, handle)
    return {"ok": True, "handle": str(att.handle),
            "plaintext": att.plaintext.hex(),
            "signature": att.signature.hex()}


def cmd_claim(casino, args):
    payout = casino.claim(args.bet_id, int(args.handle),
                          bytes.fromhex(args.plaintext),
                          bytes.fromhex(args.signature),
                          principal=args.player)
    return {"ok": True, "bet_id": args.bet_id, "payout": str(payout),
            "balance": str(casino.treasury.balance(args.player))}


def cmd_deposit(casino, args):
    pos = casino.deposit(args.depositor, int(args.amount))
    return {"ok": True, **_position(casino, pos)}


def cmd_withdraw(casino, args):
    payout = casino.withdraw(args.depositor, int(args.amount))
    pos = casino.liquidity.position(args.depositor)
    return {"ok": True, "payout": str(payout), **_position(casino, pos)}


def cmd_set_policy(casino, args):
    policy = casino.set_policy(args.house_edge_bps, args.yield_rate_bps)
    return {"ok": True, "house_edge_bps": policy.house_edge_bps,
            "yield_rate_bps": casino.liquidity.pool.config.yield_rate_bps}


def cmd_bet(casino, args):
    return {"ok": True, **_bet(casino.ledger.get(args.bet_id))}


def cmd_balance(casino, args):
    return {"ok": True, "principal": args.principal,
            "balance": str(casino.treasury.balance(args.principal))}


def cmd_position(casino, args):
    return {"ok": True,
            **_position(casino, casino.liquidity.position(args.depositor))}


def cmd_pool(casino, args):
    pool = casino.liquidity.pool
    return {"ok": True,
            "primary_balance": str(casino.treasury.primary.balance),
            "backstop_balance": str(casino.treasury.backstop.balance),
            "total_deposits": str(pool.total_deposits),
            "yield_rate_bps": pool.config.yield_rate_bps,
            "house_edge_bps": casino.policy.house_edge_bps,
            "now": casino.clock.now()}


# Commands that mutate state (need save after)
MUTATING = {"fund", "init-vault", "play", "claim",
            "deposit", "withdraw", "set-policy"}


def build_parser():
    parser = argparse.ArgumentParser(description="Casino engine CLI")
    parser.add_argument("--state", default=STATE_PATH,
                        help="Path to state file")
    parser.add_argument("--now", type=int, default=None,
                        help="Advance the logical clock to this time unit")
    sub = parser.add_subparsers(dest="command")

    p = sub.add_parser("fund")
    p.add_argument("principal")
    p.add_argument("amount")

    p = sub.add_parser("init-vault")
    p.add_argument("house")
    p.add_argument("amount")

    p = sub.add_parser("play")
    p.add_argument("player")
    p.add_argument("game", choices=sorted(GAME_KINDS))
    p.add_argument("seed", type=int)
    p.add_argument("amount")
    p.add_argument("--choice", type=int, default=None,
                   help="Plaintext pick; sealed with the local oracle")

    p = sub.add_parser("reveal")
    p.add_argument("bet_id", type=int)
    p.add_argument("player")
    p.add_argument("--handle", default=None)

    p = sub.add_parser("claim")
    p.add_argument("bet_id", type=int)
    p.add_argument("player")
    p.add_argument("handle")
    p.add_argument("plaintext")
    p.add_argument("signature")

    p = sub.add_parser("deposit")
    p.add_argument("depositor")
    p.add_argument("amount")

    p = sub.add_parser("withdraw")
    p.add_argument("depositor")
    p.add_argument("amount")

    p = sub.add_parser("set-policy")
    p.add_argument("house_edge_bps", type=int)
    p.add_argument("yield_rate_bps", type=int)

    p = sub.add_parser("bet")
    p.add_argument("bet_id", type=int)

    p = sub.add_parser("balance")
    p.add_argument("principal")

    p = sub.add_parser("position")
    p.add_argument("depositor")

    sub.add_parser("pool")
    return parser


COMMANDS = {
    "fund": cmd_fund,
    "init-vault": cmd_init_vault,
    "play": cmd_play,
    "reveal": cmd_reveal,
    "claim": cmd_claim,
    "deposit": cmd_deposit,
    "withdraw": cmd_withdraw,
    "set-policy": cmd_set_policy,
    "bet": cmd_bet,
    "balance": cmd_balance,
    "position": cmd_position,
    "pool": cmd_pool,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    logging.basicConfig(level=os.environ.get("CASINO_LOG_LEVEL", "WARNING"),
                        stream=sys.stderr)
    state_path = args.state

    try:
        with file_lock(state_path):
            casino, auth_store = load_or_create(state_path)
            if args.now is not None:
                casino.clock.set(max(args.now, casino.clock.now()))
            result = COMMANDS[args.command](casino, args)

            if args.command in MUTATING and result["ok"]:
                save_snapshot(casino, state_path, auth_store=auth_store)

            reply(result)
    except Exception as e:
        reply({"ok": False, "code": getattr(e, "code", "error"),
               "error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
