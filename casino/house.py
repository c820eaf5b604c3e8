"""
The house. Wires the engines together behind the public operations:

    play(player, kind, seed, amount, encrypted_choice) -> Bet
    claim(bet_id, handle, plaintext, signature, principal) -> payout
    deposit(depositor, amount)
    withdraw(depositor, amount) -> payout
    set_policy(house_edge_bps, yield_rate_bps)

plus vault setup and host funding. The API, CLI and persistence layer
all hold one Casino.
"""

import logging
from typing import Optional

from casino.clock import LogicalClock
from casino.errors import InvalidPolicy, MinimumBet
from casino.game_engine import GameEngine
from casino.ledger import BetLedger
from casino.liquidity import LiquidityEngine
from casino.models import (
    BACKSTOP, Bet, GameKind, Handle, LiquidityPool, LiquidityPosition,
    Policy, PRIMARY,
)
from casino.oracle import Attestation, OracleClient
from casino.payout_math import BPS
from casino.settlement import SettlementEngine
from casino.treasury import Treasury

logger = logging.getLogger(__name__)


class Casino:

    def __init__(self, oracle: OracleClient, clock=None,
                 policy: Optional[Policy] = None,
                 pool: Optional[LiquidityPool] = None,
                 treasury: Optional[Treasury] = None,
                 ledger: Optional[BetLedger] = None):
        self.oracle = oracle
        self.clock = clock or LogicalClock()
        self.policy = policy or Policy()
        self.treasury = treasury or Treasury()
        self.ledger = ledger or BetLedger()
        self.games = GameEngine(self.treasury, oracle, self.ledger,
                                self.policy, self.clock)
        self.settlement = SettlementEngine(self.treasury, oracle,
                                           self.ledger, self.clock)
        self.liquidity = LiquidityEngine(self.treasury, pool, self.clock)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def fund(self, principal: str, amount: int) -> int:
        """Mint host balance for a principal. Returns the new balance."""
        self.treasury.mint(principal, amount)
        return self.treasury.balance(principal)

    def initialize_vault(self, house: str, amount: int) -> None:
        """House seeds both pools with `amount` each from its own balance."""
        if amount <= 0:
            raise MinimumBet("vault funding must be positive")
        with self.treasury.atomic():
            self.treasury.transfer(house, PRIMARY, amount,
                                   reason="vault_init")
            self.treasury.transfer(house, BACKSTOP, amount,
                                   reason="vault_init")
        logger.info("vaults funded by %s with %d each", house, amount)

    def set_policy(self, house_edge_bps: int, yield_rate_bps: int) -> Policy:
        """Administrative: house edge for new bets, yield rate for the pool."""
        if not 0 <= house_edge_bps < BPS:
            raise InvalidPolicy(
                f"house_edge_bps must be in [0, {BPS}), got {house_edge_bps}")
        self.liquidity.set_yield_rate(yield_rate_bps)
        self.policy.house_edge_bps = house_edge_bps
        logger.info("policy: house edge %d bps, yield %d bps",
                    house_edge_bps, yield_rate_bps)
        return self.policy

    # ------------------------------------------------------------------
    # Games
    # ------------------------------------------------------------------

    def play(self, player: str, kind: GameKind, seed: int, amount: int,
             encrypted_choice: Optional[bytes] = None) -> Bet:
        return self.games.play(player, kind, seed, amount, encrypted_choice)

    def reveal(self, bet_id: int, principal: str,
               handle: Optional[Handle] = None) -> Attestation:
        """Attested decryption of a bet's payout (or another granted) handle."""
        bet = self.ledger.get(bet_id)
        return self.oracle.decrypt(
            bet.payout_handle if handle is None else handle, principal)

    def claim(self, bet_id: int, handle: Handle, plaintext: bytes,
              signature: bytes = b"",
              principal: Optional[str] = None) -> int:
        return self.settlement.claim(bet_id, handle, plaintext, signature,
                                     principal)

    # ------------------------------------------------------------------
    # Liquidity
    # ------------------------------------------------------------------

    def deposit(self, depositor: str, amount: int) -> LiquidityPosition:
        return self.liquidity.deposit(depositor, amount)

    def withdraw(self, depositor: str, amount: int) -> int:
        return self.liquidity.withdraw(depositor, amount)
