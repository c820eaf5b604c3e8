"""
Settlement engine. Converts a verified payout plaintext into funds,
exactly once per bet.

claim() checks, in order:
  1. bet not yet claimed                      (AlreadyClaimed)
  2. caller is the bet's player, if given     (NotBetOwner)
  3. presented handle is the payout handle    (HandleMismatch)
  4. oracle attests the plaintext             (InvalidDecryptionProof)
Then it decodes the payout and pays it through the waterfall:
  primary pool first, backstop pool for the remainder. The split is
  planned before anything moves; if the two pools can't cover the
  whole payout nothing moves at all (InsufficientVaultFunds).

claimed is set last, after every transfer succeeded. A failed claim
leaves the bet claimable.
"""

import logging
from typing import Optional

from casino.errors import (
    AlreadyClaimed, HandleMismatch, InsufficientVaultFunds,
    InvalidDecryptionProof, NotBetOwner, OracleRejected,
)
from casino.ledger import BetLedger
from casino.models import BACKSTOP, Bet, Handle, PRIMARY
from casino.oracle import OracleClient
from casino.payout_math import parse_plaintext, plan_waterfall
from casino.treasury import Treasury

logger = logging.getLogger(__name__)


class SettlementEngine:

    def __init__(self, treasury: Treasury, oracle: OracleClient,
                 ledger: BetLedger, clock=None):
        self.treasury = treasury
        self.oracle = oracle
        self.ledger = ledger
        self.clock = clock

    def claim(self, bet_id: int, handle: Handle, plaintext: bytes,
              signature: bytes = b"",
              principal: Optional[str] = None) -> int:
        """Settle a bet. Returns the payout (0 for a loss)."""
        bet = self.ledger.get(bet_id)
        if bet.claimed:
            raise AlreadyClaimed(f"bet {bet_id} already claimed")
        if principal is not None and principal != bet.player:
            raise NotBetOwner(f"bet {bet_id} belongs to {bet.player}")
        if handle != bet.payout_handle:
            raise HandleMismatch(
                f"bet {bet_id}: handle {handle} is not its payout handle")

        try:
            valid = self.oracle.verify_decryption(
                handle, plaintext, bet.player, signature)
        except OracleRejected as e:
            raise InvalidDecryptionProof(f"bet {bet_id}: {e}") from e
        if not valid:
            raise InvalidDecryptionProof(
                f"bet {bet_id}: plaintext does not open the payout handle")

        payout = parse_plaintext(plaintext)
        if payout > 0:
            self._pay(bet, payout)

        bet.claimed = True
        bet.payout = payout
        if self.clock is not None:
            bet.claimed_at = self.clock.now()
        logger.info("bet %d: claimed %d by %s", bet.id, payout, bet.player)
        return payout

    def _pay(self, bet: Bet, payout: int) -> None:
        primary = self.treasury.primary.balance
        backstop = self.treasury.backstop.balance
        try:
            from_primary, from_backstop = plan_waterfall(
                payout, primary, backstop)
        except InsufficientVaultFunds:
            logger.warning(
                "bet %d: vaults underfunded for payout %d "
                "(primary %d, backstop %d)",
                bet.id, payout, primary, backstop)
            raise

        if from_backstop:
            logger.warning(
                "bet %d: primary short by %d, drawing on backstop",
                bet.id, from_backstop)

        with self.treasury.atomic():
            if from_primary:
                self.treasury.transfer(PRIMARY, bet.player, from_primary,
                                       reason="payout", bet_id=bet.id)
            if from_backstop:
                self.treasury.transfer(BACKSTOP, bet.player, from_backstop,
                                       reason="payout_backstop",
                                       bet_id=bet.id)
