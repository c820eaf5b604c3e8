"""
Game engine. Turns a wager into an oracle program and a bet record.

Every game has the same shape: draw encrypted randoms, compare them
against the player's encrypted choice (if the game has one), and select
an encrypted payout: the net win amount or zero. The engine never
learns which; the player decrypts the payout handle off-chain and
brings it back to the settlement engine.

Games (one resolver each, dispatched by resolve()):
  coinflip  draw mod 2,  win if choice == draw, pays 2x
  roulette  draw mod 37, win if choice == draw, pays 36x (straight bet)
  slot      three draws mod 10, both pairs match -> jackpot,
            one adjacent pair -> small win, else 0
  aviator   crash = floor + draw mod range, win if crash >= target,
            pays the flat max multiplier (no partial cashout)

All win amounts are net of house edge and computed in plaintext before
being encrypted; only the comparison is confidential.

play() order of effects:
  1. validate amount and choice (nothing moves on failure)
  2. bet amount: player -> primary pool, win or lose
  3. oracle program: choice, outcomes, payout
  4. grant the player decrypt on payout + outcome handles
  5. record the bet, claimed = False
Steps 2-5 run inside treasury.atomic(): an oracle failure after the
transfer rolls it back and leaves no bet behind.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from casino.clock import LogicalClock
from casino.errors import MaximumBet, MinimumBet, MissingChoice
from casino.ledger import BetLedger
from casino.models import (
    Bet, BinaryChoice, BoundedChoice, GameKind, Handle, MultiReel,
    NO_HANDLE, Policy, PRIMARY, ThresholdRace, next_id,
)
from casino.oracle import OracleClient
from casino.payout_math import win_payout, win_payout_bps
from casino.treasury import Treasury

logger = logging.getLogger(__name__)


@dataclass
class Resolution:
    outcome_handles: list[Handle]
    payout_handle: Handle


# ---------------------------------------------------------------------------
# Resolvers
# ---------------------------------------------------------------------------

def _pick_number(oracle: OracleClient, choice: Handle, modulus: int,
                 win_amount: int, principal: str) -> Resolution:
    """Shared by coinflip and roulette: one draw, exact match wins."""
    draw = oracle.random_bounded(modulus, principal)
    is_winner = oracle.eq(choice, draw, principal)
    win = oracle.encrypt(win_amount, principal)
    zero = oracle.encrypt(0, principal)
    payout = oracle.select(is_winner, win, zero, principal)
    return Resolution([draw], payout)


def _resolve_coinflip(oracle, kind: BinaryChoice, choice, amount,
                      principal, house_edge_bps) -> Resolution:
    win_amount = win_payout(amount, kind.multiplier, house_edge_bps)
    return _pick_number(oracle, choice, 2, win_amount, principal)


def _resolve_roulette(oracle, kind: BoundedChoice, choice, amount,
                      principal, house_edge_bps) -> Resolution:
    win_amount = win_payout(amount, kind.multiplier, house_edge_bps)
    return _pick_number(oracle, choice, kind.modulus, win_amount, principal)


def _resolve_slot(oracle, kind: MultiReel, choice, amount,
                  principal, house_edge_bps) -> Resolution:
    jackpot_amount = win_payout(amount, kind.jackpot_multiplier,
                                house_edge_bps)
    small_amount = win_payout(amount, kind.small_win_multiplier,
                              house_edge_bps)

    reels = [oracle.random_bounded(kind.symbols, principal)
             for _ in range(3)]
    match12 = oracle.eq(reels[0], reels[1], principal)
    match23 = oracle.eq(reels[1], reels[2], principal)

    jackpot = oracle.encrypt(jackpot_amount, principal)
    small = oracle.encrypt(small_amount, principal)
    zero = oracle.encrypt(0, principal)

    # Tier priority jackpot > small win > loss:
    #   match12 and match23 -> jackpot
    #   exactly one         -> small
    #   neither             -> 0
    level3 = oracle.select(match23, small, zero, principal)
    inner = oracle.select(match23, jackpot, small, principal)
    payout = oracle.select(match12, inner, level3, principal)
    return Resolution(reels, payout)


def _resolve_aviator(oracle, kind: ThresholdRace, choice, amount,
                     principal, house_edge_bps) -> Resolution:
    # Flat max payout: scaling by the crash point would need encrypted
    # multiplication by a plaintext ratio.
    max_amount = win_payout_bps(amount, kind.max_multiplier_bps,
                                house_edge_bps)

    offset = oracle.random_bounded(kind.range, principal)
    floor = oracle.encrypt(kind.floor, principal)
    crash_point = oracle.add(offset, floor, principal)
    is_winner = oracle.ge(crash_point, choice, principal)

    win = oracle.encrypt(max_amount, principal)
    zero = oracle.encrypt(0, principal)
    payout = oracle.select(is_winner, win, zero, principal)
    return Resolution([crash_point], payout)


_RESOLVERS: dict[type, Callable[..., Resolution]] = {
    BinaryChoice: _resolve_coinflip,
    BoundedChoice: _resolve_roulette,
    MultiReel: _resolve_slot,
    ThresholdRace: _resolve_aviator,
}


def resolve(oracle: OracleClient, kind: GameKind, choice: Handle,
            amount: int, principal: str,
            house_edge_bps: int) -> Resolution:
    """Build the oracle program for one game and return its handles."""
    resolver = _RESOLVERS.get(type(kind))
    if resolver is None:
        raise ValueError(f"unknown game kind: {kind!r}")
    return resolver(oracle, kind, choice, amount, principal, house_edge_bps)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class GameEngine:

    def __init__(self, treasury: Treasury, oracle: OracleClient,
                 ledger: BetLedger, policy: Optional[Policy] = None,
                 clock=None):
        self.treasury = treasury
        self.oracle = oracle
        self.ledger = ledger
        self.policy = policy or Policy()
        self.clock = clock or LogicalClock()

    def validate(self, kind: GameKind, amount: int,
                 encrypted_choice: Optional[bytes]) -> None:
        if amount < self.policy.min_bet:
            raise MinimumBet(
                f"bet {amount} below minimum {self.policy.min_bet}")
        if amount > self.policy.max_bet:
            raise MaximumBet(
                f"bet {amount} above maximum {self.policy.max_bet}")
        if kind.requires_choice and not encrypted_choice:
            raise MissingChoice(f"{kind.tag} needs an encrypted choice")

    def play(self, player: str, kind: GameKind, seed: int, amount: int,
             encrypted_choice: Optional[bytes] = None) -> Bet:
        """
        Place a bet. Returns the recorded Bet (claimed=False).

        encrypted_choice: ciphertext of the player's pick: the coinflip
        side, the roulette number, the aviator target (bps). Ignored by
        games without a choice.
        """
        self.validate(kind, amount, encrypted_choice)
        self.ledger.check_unique(player, kind.tag, seed)
        now = self.clock.now()

        # Pre-allocate bet ID so the transfer can reference it
        bet_id = next_id("bet")

        with self.treasury.atomic():
            self.treasury.transfer(player, PRIMARY, amount,
                                   reason=f"bet:{kind.tag}", bet_id=bet_id)

            choice = NO_HANDLE
            if kind.requires_choice:
                choice = self.oracle.ingest(encrypted_choice, player)

            result = resolve(self.oracle, kind, choice, amount, player,
                             self.policy.house_edge_bps)

            for handle in [result.payout_handle, *result.outcome_handles]:
                self.oracle.grant_decrypt(handle, player)

            bet = self.ledger.add(Bet(
                id=bet_id,
                player=player,
                game_kind=kind,
                seed=seed,
                amount=amount,
                timestamp=now,
                choice_handle=choice,
                payout_handle=result.payout_handle,
                outcome_handles=result.outcome_handles,
            ))

        logger.info("bet %d: %s played %s for %d", bet.id, player,
                    kind.tag, amount)
        return bet
