"""
Data models for the confidential casino.

Three domains:
- Treasury side: host accounts (players, house) and the two pools,
  plus the append-only transaction ledger
- Game side: game kinds and bets, with the oracle handles they produced
- Liquidity side: the backstop pool's depositor positions

All amounts are integers in the smallest currency unit (u64 domain).
Handles are opaque u128 keys; NO_HANDLE marks "no handle".
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Optional, Union


Handle = int
NO_HANDLE: Handle = 0

PRIMARY = "pool:primary"
BACKSTOP = "pool:backstop"

MAX_OUTCOME_HANDLES = 4


# ---------------------------------------------------------------------------
# Sequential IDs
# ---------------------------------------------------------------------------

_counters: dict[str, int] = defaultdict(int)


def next_id(kind: str) -> int:
    """Sequential ID. Kinds: bet, tx."""
    _counters[kind] += 1
    return _counters[kind]


def reset_counters() -> None:
    """Reset all counters. For testing."""
    _counters.clear()


def set_counter(kind: str, value: int) -> None:
    """Set a counter. For loading persisted state."""
    _counters[kind] = value


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

@dataclass
class Policy:
    """House policy. Checked before any funds move on play."""
    house_edge_bps: int = 150
    min_bet: int = 10_000_000
    max_bet: int = 10_000_000_000


@dataclass
class LiquidityPoolConfig:
    yield_rate_bps: int = 500
    time_units_per_year: int = 63_072_000


# ---------------------------------------------------------------------------
# Treasury side
# ---------------------------------------------------------------------------

@dataclass
class Account:
    """
    A balance held by the host. Pools and player wallets are both
    accounts; pools are named PRIMARY and BACKSTOP.
    """
    id: str
    balance: int = 0
    created_at: str = field(default_factory=_now)


@dataclass
class Transaction:
    """
    Append-only ledger entry. One per account touched by a transfer.

    delta > 0 credits the account, delta < 0 debits it.
    """
    id: int
    account_id: str
    delta: int
    reason: str
    bet_id: Optional[int] = None
    created_at: str = field(default_factory=_now)

    @staticmethod
    def new(account_id: str, delta: int, reason: str,
            bet_id: Optional[int] = None) -> "Transaction":
        return Transaction(
            id=next_id("tx"),
            account_id=account_id,
            delta=delta,
            reason=reason,
            bet_id=bet_id,
        )


# ---------------------------------------------------------------------------
# Game side
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BinaryChoice:
    """Coinflip. Player picks 0 or 1."""
    tag: ClassVar[str] = "coinflip"
    requires_choice: ClassVar[bool] = True
    multiplier: int = 2


@dataclass(frozen=True)
class BoundedChoice:
    """Roulette, straight bet only. Player picks 0..modulus-1."""
    tag: ClassVar[str] = "roulette"
    requires_choice: ClassVar[bool] = True
    modulus: int = 37
    multiplier: int = 36
    bet_type: int = 0       # 0 = straight


@dataclass(frozen=True)
class MultiReel:
    """Slot machine. Three reels, no player choice."""
    tag: ClassVar[str] = "slot"
    requires_choice: ClassVar[bool] = False
    symbols: int = 10
    jackpot_multiplier: int = 50
    small_win_multiplier: int = 5


@dataclass(frozen=True)
class ThresholdRace:
    """
    Aviator. Player picks a target multiplier (bps); the crash point is
    floor + random(range). Win pays a flat max multiplier.
    """
    tag: ClassVar[str] = "aviator"
    requires_choice: ClassVar[bool] = True
    floor: int = 10_000
    range: int = 90_000
    max_multiplier_bps: int = 100_000


GameKind = Union[BinaryChoice, BoundedChoice, MultiReel, ThresholdRace]

GAME_KINDS: dict[str, type] = {
    k.tag: k for k in (BinaryChoice, BoundedChoice, MultiReel, ThresholdRace)
}


def game_kind_to_dict(kind: GameKind) -> dict:
    return {"tag": kind.tag, **asdict(kind)}


def game_kind_from_dict(d: dict) -> GameKind:
    d = dict(d)
    cls = GAME_KINDS.get(d.pop("tag"))
    if cls is None:
        raise ValueError(f"unknown game kind: {d}")
    return cls(**d)


@dataclass
class Bet:
    """
    One play of one game. Created by the game engine, closed by the
    settlement engine.

    payout_handle opens to the net payout (0 on a loss). Nothing on
    record tells a win from a loss until a verified plaintext is
    presented at claim time.

    outcome_handles: the random draws, in order
      coinflip: [flip]   roulette: [spin]
      slot: [reel1, reel2, reel3]   aviator: [crash_point]

    claimed flips False -> True exactly once and is never reset.
    """
    id: int
    player: str
    game_kind: GameKind
    seed: int
    amount: int
    timestamp: int
    choice_handle: Handle
    payout_handle: Handle
    outcome_handles: list[Handle]
    claimed: bool = False
    payout: Optional[int] = None        # set at claim
    claimed_at: Optional[int] = None
    created_at: str = field(default_factory=_now)

    def __post_init__(self):
        if not 1 <= len(self.outcome_handles) <= MAX_OUTCOME_HANDLES:
            raise ValueError(
                f"bet needs 1-{MAX_OUTCOME_HANDLES} outcome handles, "
                f"got {len(self.outcome_handles)}")

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.player, self.game_kind.tag, self.seed)


# ---------------------------------------------------------------------------
# Liquidity side
# ---------------------------------------------------------------------------

@dataclass
class LiquidityPool:
    """Aggregate record for the backstop pool's depositors."""
    pool_id: str = BACKSTOP
    total_deposits: int = 0
    config: LiquidityPoolConfig = field(default_factory=LiquidityPoolConfig)


@dataclass
class LiquidityPosition:
    """
    One depositor's stake in the backstop pool.

    accrued_yield only grows between accruals and resets to zero only
    when it is paid out on withdraw.
    """
    depositor: str
    principal: int = 0
    deposit_time: int = 0
    last_accrual_time: int = 0
    accrued_yield: int = 0
