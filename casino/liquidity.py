"""
Liquidity engine. Depositors fund the backstop pool and earn simple
interest per elapsed time unit.

Accrual is lazy: a position's yield is brought up to date right before
anything changes its principal (deposit, withdraw) or the rate it
earns at (set_yield_rate). Between those events nothing is stored.

    accrued = principal * yield_rate_bps * elapsed
              / (10_000 * time_units_per_year)

Truncating division; the time cursor still advances, so dust lost to
truncation is not carried forward.

Arithmetic policy:
  position principal / yield   checked (Overflow on violation)
  pool.total_deposits          increase checked, decrease saturating;
                               the aggregate tolerates drift, a single
                               position never does

deposit and withdraw stage every change on a copy of the position and
commit only after the treasury transfer succeeds.
"""

import logging
from dataclasses import replace
from typing import Optional

from casino.clock import LogicalClock
from casino.errors import (
    InvalidPolicy, MaximumBet, MinimumBet, PositionNotFound,
)
from casino.models import BACKSTOP, LiquidityPool, LiquidityPosition
from casino.payout_math import (
    BPS, accrued_yield, checked_add, checked_sub, saturating_sub,
)
from casino.treasury import Treasury

logger = logging.getLogger(__name__)


def accrue(position: LiquidityPosition, pool: LiquidityPool,
           now: int) -> int:
    """
    Bring a position's yield up to `now`. Returns the amount added.

    No-op for an empty position or when `now` is not past the last
    accrual, so calling twice at the same `now` adds nothing the second
    time.
    """
    if position.principal == 0 or now <= position.last_accrual_time:
        return 0
    elapsed = now - position.last_accrual_time
    accrued = accrued_yield(position.principal, pool.config.yield_rate_bps,
                            elapsed, pool.config.time_units_per_year)
    position.accrued_yield = checked_add(position.accrued_yield, accrued)
    position.last_accrual_time = now
    return accrued


class LiquidityEngine:

    def __init__(self, treasury: Treasury,
                 pool: Optional[LiquidityPool] = None, clock=None):
        self.treasury = treasury
        self.pool = pool or LiquidityPool()
        self.clock = clock or LogicalClock()
        self.positions: dict[str, LiquidityPosition] = {}

    def position(self, depositor: str) -> LiquidityPosition:
        pos = self.positions.get(depositor)
        if pos is None:
            raise PositionNotFound(f"{depositor} has no liquidity position")
        return pos

    def _now(self, now: Optional[int]) -> int:
        return self.clock.now() if now is None else now

    # ------------------------------------------------------------------
    # Deposit / withdraw
    # ------------------------------------------------------------------

    def deposit(self, depositor: str, amount: int,
                now: Optional[int] = None) -> LiquidityPosition:
        """Add `amount` to the depositor's principal, funding the backstop."""
        if amount <= 0:
            raise MinimumBet("deposit amount must be positive")
        now = self._now(now)

        current = self.positions.get(depositor) or LiquidityPosition(
            depositor=depositor)
        staged = replace(current)
        accrue(staged, self.pool, now)
        staged.principal = checked_add(staged.principal, amount)
        total = checked_add(self.pool.total_deposits, amount)
        staged.deposit_time = now
        staged.last_accrual_time = now

        self.treasury.transfer(depositor, BACKSTOP, amount,
                               reason="lp_deposit")

        self.positions[depositor] = staged
        self.pool.total_deposits = total
        logger.info("lp deposit: %s +%d (principal %d)",
                    depositor, amount, staged.principal)
        return staged

    def withdraw(self, depositor: str, amount: int,
                 now: Optional[int] = None) -> int:
        """
        Withdraw `amount` of principal plus all accrued yield.
        Returns the total paid out of the backstop pool.
        """
        if amount <= 0:
            raise MinimumBet("withdraw amount must be positive")
        current = self.position(depositor)
        if amount > current.principal:
            raise MaximumBet(
                f"{depositor}: can't withdraw {amount}, "
                f"principal is {current.principal}")
        now = self._now(now)

        staged = replace(current)
        accrue(staged, self.pool, now)
        payout = checked_add(amount, staged.accrued_yield)

        # Pool authority signs for the backstop, not the depositor
        self.treasury.transfer(BACKSTOP, depositor, payout,
                               reason="lp_withdraw")

        staged.principal = checked_sub(staged.principal, amount)
        staged.accrued_yield = 0
        staged.last_accrual_time = now

        self.positions[depositor] = staged
        self.pool.total_deposits = saturating_sub(
            self.pool.total_deposits, amount)
        logger.info("lp withdraw: %s -%d, paid %d (principal %d)",
                    depositor, amount, payout, staged.principal)
        return payout

    # ------------------------------------------------------------------
    # Queries and admin
    # ------------------------------------------------------------------

    def preview(self, depositor: str, now: Optional[int] = None) -> int:
        """Accrued yield as of `now`, without touching the position."""
        staged = replace(self.position(depositor))
        accrue(staged, self.pool, self._now(now))
        return staged.accrued_yield

    def set_yield_rate(self, yield_rate_bps: int,
                       now: Optional[int] = None) -> None:
        """
        Change the pool's rate. Every position is accrued at the old
        rate first, so the new rate only applies from `now` on.
        """
        if not 0 <= yield_rate_bps <= BPS:
            raise InvalidPolicy(
                f"yield_rate_bps must be in [0, {BPS}], got {yield_rate_bps}")
        now = self._now(now)
        for pos in self.positions.values():
            accrue(pos, self.pool, now)
        old = self.pool.config.yield_rate_bps
        self.pool.config.yield_rate_bps = yield_rate_bps
        logger.info("lp yield rate %d -> %d bps", old, yield_rate_bps)
