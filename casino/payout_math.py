"""
Payout arithmetic. Pure integer math, no state.

All quantities are non-negative integers in the u64 domain. Python ints
don't wrap, so the domain is enforced explicitly: `checked_*` raise
Overflow when a result leaves [0, U64_MAX], `saturating_*` clamp.

Basis points: 10_000 bps = 100%. Divisions truncate toward zero.
"""

from casino.errors import Overflow, InsufficientVaultFunds


U64_MAX = 2 ** 64 - 1
U128_MAX = 2 ** 128 - 1
BPS = 10_000

PLAINTEXT_WIDTH = 8     # bytes decoded from a verified plaintext


# ---------------------------------------------------------------------------
# Domain-checked arithmetic
# ---------------------------------------------------------------------------

def checked_add(a: int, b: int, limit: int = U64_MAX) -> int:
    result = a + b
    if result > limit:
        raise Overflow(f"{a} + {b} exceeds {limit}")
    return result


def checked_sub(a: int, b: int) -> int:
    if b > a:
        raise Overflow(f"{a} - {b} underflows")
    return a - b


def checked_mul(a: int, b: int, limit: int = U64_MAX) -> int:
    result = a * b
    if result > limit:
        raise Overflow(f"{a} * {b} exceeds {limit}")
    return result


def saturating_sub(a: int, b: int) -> int:
    return a - b if a > b else 0


# ---------------------------------------------------------------------------
# House edge and game payouts
# ---------------------------------------------------------------------------

def apply_house_edge(gross: int, house_edge_bps: int) -> int:
    """
    net = gross - floor(gross * house_edge_bps / 10_000)

    The product is taken in the widened domain (gross <= u64,
    bps < 10_000, so it always fits u128). Subtraction saturates.
    """
    edge = (gross * house_edge_bps) // BPS
    return saturating_sub(gross, edge)


def win_payout(amount: int, multiplier: int, house_edge_bps: int) -> int:
    """Net payout for a win at an integer multiplier. Gross is checked."""
    gross = checked_mul(amount, multiplier)
    return apply_house_edge(gross, house_edge_bps)


def win_payout_bps(amount: int, multiplier_bps: int,
                   house_edge_bps: int) -> int:
    """Net payout for a win at a basis-point multiplier (15_000 = 1.5x)."""
    gross = checked_mul(amount, multiplier_bps, limit=U128_MAX) // BPS
    if gross > U64_MAX:
        raise Overflow(f"{amount} at {multiplier_bps} bps exceeds {U64_MAX}")
    return apply_house_edge(gross, house_edge_bps)


# ---------------------------------------------------------------------------
# Waterfall
# ---------------------------------------------------------------------------

def plan_waterfall(payout: int, primary: int,
                   backstop: int) -> tuple[int, int]:
    """
    Split a payout across the primary and backstop pools.

    Returns (from_primary, from_backstop). Primary pays everything it
    can; backstop covers the rest. Raises InsufficientVaultFunds if the
    two together fall short. Nothing is moved here, so a failed plan
    never leaves a partial transfer behind.
    """
    if primary >= payout:
        return payout, 0
    from_primary = primary
    from_backstop = checked_sub(payout, from_primary)
    if backstop < from_backstop:
        raise InsufficientVaultFunds(
            f"payout {payout}: primary has {primary}, backstop needs "
            f"{from_backstop} but has {backstop}")
    return from_primary, from_backstop


# ---------------------------------------------------------------------------
# Liquidity accrual
# ---------------------------------------------------------------------------

def accrued_yield(principal: int, yield_rate_bps: int, elapsed: int,
                  time_units_per_year: int) -> int:
    """
    Simple interest over `elapsed` time units:

        principal * yield_rate_bps * elapsed / (10_000 * time_units_per_year)

    Intermediate products are checked in the u128 domain, the result is
    narrowed back to u64.
    """
    numerator = checked_mul(principal, yield_rate_bps, limit=U128_MAX)
    numerator = checked_mul(numerator, elapsed, limit=U128_MAX)
    accrued = numerator // (BPS * time_units_per_year)
    if accrued > U64_MAX:
        raise Overflow(f"accrued yield {accrued} exceeds {U64_MAX}")
    return accrued


# ---------------------------------------------------------------------------
# Plaintext decoding
# ---------------------------------------------------------------------------

def parse_plaintext(plaintext: bytes) -> int:
    """
    Decode a verified plaintext into a payout quantity.

    The oracle opens u128 values as little-endian bytes; the low 8 bytes
    are the u64 payout. Shorter input is zero-padded on the high end
    and empty input decodes to 0. The signature check has already
    happened.
    """
    low = bytes(plaintext[:PLAINTEXT_WIDTH])
    return int.from_bytes(low.ljust(PLAINTEXT_WIDTH, b"\x00"), "little")


def encode_plaintext(value: int, width: int = 16) -> bytes:
    """Little-endian encoding an oracle uses when opening a handle."""
    return value.to_bytes(width, "little")
