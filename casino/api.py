"""
FastAPI application. HTTP API for the confidential casino.

Public endpoints (no auth): health, bet detail, pool.
User endpoints (API key): /me, play, reveal, claim, liquidity.
Admin endpoints (admin key): fund, vault, policy.
"""

import asyncio
import dataclasses
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from casino.api_errors import APIError, api_error_handler, translate_engine_error
from casino.api_models import (
    RegisterRequest, RegisterResponse, RotateKeyResponse,
    AccountResponse,
    PlayRequest, BetResponse, RevealRequest, AttestationResponse,
    ClaimRequest, ClaimResponse, SealRequest, SealResponse,
    LiquidityRequest, PositionResponse, WithdrawResponse, PoolResponse,
    FundRequest, FundResponse, VaultRequest, PolicyRequest, PolicyResponse,
    HealthResponse,
)
from casino.auth import AuthStore
from casino.clock import SlotClock
from casino.errors import CasinoError
from casino.house import Casino
from casino.middleware import HouseOperator, Player
from casino.models import GAME_KINDS, Bet, LiquidityPosition, reset_counters
from casino.oracle import oracle_from_env
from casino.persistence import save_snapshot, load_snapshot


STATE_PATH = os.environ.get("CASINO_STATE", "./casino_state.json")
INITIAL_CREDITS = int(os.environ.get("CASINO_INITIAL_CREDITS", "1000000000"))
LOG_LEVEL = os.environ.get("CASINO_LOG_LEVEL", "INFO")

HOUSE = "house"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Load state
    oracle = oracle_from_env(key_path=STATE_PATH + ".key")
    if os.path.exists(STATE_PATH):
        casino, auth_store = load_snapshot(STATE_PATH, oracle,
                                           clock=SlotClock())
        logger.info("loaded %d bets from %s", len(casino.ledger.bets),
                    STATE_PATH)
    else:
        reset_counters()
        casino = Casino(oracle, clock=SlotClock())
        auth_store = AuthStore()

    app.state.casino = casino
    app.state.auth_store = auth_store
    app.state.lock = asyncio.Lock()
    yield
    if hasattr(oracle, "close"):
        oracle.close()


app = FastAPI(title="Casino API", version="0.1.0", lifespan=lifespan)
app.add_exception_handler(APIError, api_error_handler)


def _save():
    """Save state to disk. Called after every mutation."""
    save_snapshot(app.state.casino, STATE_PATH,
                  auth_store=app.state.auth_store)


# ---------------------------------------------------------------------------
# Request parsing and response shaping
# ---------------------------------------------------------------------------

def _parse_amount(raw: str, name: str = "amount") -> int:
    try:
        amount = int(raw)
    except ValueError:
        raise APIError(400, "invalid_amount", f"Invalid {name}: {raw}")
    if amount <= 0:
        raise APIError(400, "invalid_amount", f"{name} must be positive")
    return amount


def _parse_handle(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise APIError(400, "invalid_handle", f"Invalid handle: {raw}")


def _parse_hex(raw: str, name: str) -> bytes:
    try:
        return bytes.fromhex(raw)
    except ValueError:
        raise APIError(400, "invalid_hex", f"{name} must be hex")


def _bet_response(bet: Bet) -> BetResponse:
    return BetResponse(
        bet_id=bet.id,
        player=bet.player,
        game=bet.game_kind.tag,
        params=dataclasses.asdict(bet.game_kind),
        seed=bet.seed,
        amount=str(bet.amount),
        timestamp=bet.timestamp,
        choice_handle=str(bet.choice_handle),
        payout_handle=str(bet.payout_handle),
        outcome_handles=[str(h) for h in bet.outcome_handles],
        claimed=bet.claimed,
        payout=None if bet.payout is None else str(bet.payout),
    )


def _position_response(pos: LiquidityPosition) -> PositionResponse:
    casino = app.state.casino
    return PositionResponse(
        depositor=pos.depositor,
        principal=str(pos.principal),
        accrued_yield=str(pos.accrued_yield),
        pending_yield=str(casino.liquidity.preview(pos.depositor)),
        deposit_time=pos.deposit_time,
        last_accrual_time=pos.last_accrual_time,
    )


def _balance(principal: str) -> int:
    acc = app.state.casino.treasury.accounts.get(principal)
    return acc.balance if acc else 0


# ---------------------------------------------------------------------------
# Health + public data
# ---------------------------------------------------------------------------

@app.get("/v1/health")
async def health() -> HealthResponse:
    casino = app.state.casino
    return HealthResponse(
        status="ok",
        bets=len(casino.ledger.bets),
        accounts=len(casino.treasury.accounts),
    )


@app.get("/v1/bets/{bet_id}")
async def get_bet(bet_id: int) -> BetResponse:
    """Bet detail. Handles are opaque, so this is public."""
    try:
        bet = app.state.casino.ledger.get(bet_id)
    except CasinoError as e:
        raise translate_engine_error(e)
    return _bet_response(bet)


@app.get("/v1/pool")
async def get_pool() -> PoolResponse:
    casino = app.state.casino
    pool = casino.liquidity.pool
    return PoolResponse(
        total_deposits=str(pool.total_deposits),
        yield_rate_bps=pool.config.yield_rate_bps,
        time_units_per_year=pool.config.time_units_per_year,
        primary_balance=str(casino.treasury.primary.balance),
        backstop_balance=str(casino.treasury.backstop.balance),
    )


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@app.post("/v1/auth/register")
async def auth_register(req: RegisterRequest) -> RegisterResponse:
    """Register a username. Mints the initial credits."""
    username = req.username.strip()
    if not username or len(username) > 40:
        raise APIError(400, "invalid_username",
                       "Username must be 1-40 characters")
    # Pool accounts are "pool:..."; the house funds the vaults
    if ":" in username or username == HOUSE:
        raise APIError(400, "invalid_username",
                       f"Username '{username}' is reserved")

    async with app.state.lock:
        casino = app.state.casino
        try:
            user, raw_key = app.state.auth_store.register_user(username)
        except ValueError as e:
            if str(e) == "username_taken":
                raise APIError(409, "username_taken",
                               f"Username '{username}' is already taken")
            raise
        if username not in casino.treasury.accounts:
            casino.treasury.create_account(username)
        if INITIAL_CREDITS > 0:
            casino.fund(username, INITIAL_CREDITS)
        _save()

    return RegisterResponse(
        api_key=raw_key,
        username=user.username,
        balance=str(_balance(username)),
    )


@app.post("/v1/auth/rotate")
async def auth_rotate(player: Player) -> RotateKeyResponse:
    """Issue a new API key. The current one stops working."""
    async with app.state.lock:
        raw_key = app.state.auth_store.rotate_key(player)
        _save()
    return RotateKeyResponse(api_key=raw_key)


# ---------------------------------------------------------------------------
# User endpoints
# ---------------------------------------------------------------------------

@app.get("/v1/me")
async def get_me(player: Player) -> AccountResponse:
    bets = app.state.casino.ledger.for_player(player)
    return AccountResponse(
        username=player,
        balance=str(_balance(player)),
        bets=[b.id for b in bets],
    )


@app.post("/v1/oracle/seal")
async def seal_choice(req: SealRequest, player: Player) -> SealResponse:
    """
    Encrypt a choice for the local oracle. A remote oracle's players
    encrypt client-side against its public key instead.
    """
    oracle = app.state.casino.oracle
    if not hasattr(oracle, "seal"):
        raise APIError(501, "seal_unavailable",
                       "Choices must be encrypted client-side")
    try:
        value = int(req.value)
    except ValueError:
        raise APIError(400, "invalid_value", f"Invalid value: {req.value}")
    if value < 0:
        raise APIError(400, "invalid_value", "Value must be non-negative")
    return SealResponse(ciphertext=oracle.seal(value).hex())


@app.post("/v1/games/{game}/play")
async def play(game: str, req: PlayRequest, player: Player) -> BetResponse:
    """Place a bet. The response carries the handles to decrypt."""
    kind_cls = GAME_KINDS.get(game)
    if kind_cls is None:
        raise APIError(404, "game_not_found", f"Unknown game: {game}")
    amount = _parse_amount(req.amount)
    choice = None
    if req.encrypted_choice:
        choice = _parse_hex(req.encrypted_choice, "encrypted_choice")

    async with app.state.lock:
        try:
            bet = app.state.casino.play(player, kind_cls(), req.seed,
                                        amount, choice)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)

    return _bet_response(bet)


@app.post("/v1/bets/{bet_id}/reveal")
async def reveal(bet_id: int, req: RevealRequest,
                 player: Player) -> AttestationResponse:
    """Attested decryption of the payout handle (or another granted one)."""
    handle = None if req.handle is None else _parse_handle(req.handle)
    try:
        att = app.state.casino.reveal(bet_id, player, handle)
    except CasinoError as e:
        raise translate_engine_error(e)
    return AttestationResponse(
        handle=str(att.handle),
        plaintext=att.plaintext.hex(),
        signature=att.signature.hex(),
    )


@app.post("/v1/bets/{bet_id}/claim")
async def claim(bet_id: int, req: ClaimRequest,
                player: Player) -> ClaimResponse:
    """Settle a bet with an attested payout plaintext."""
    handle = _parse_handle(req.handle)
    plaintext = _parse_hex(req.plaintext, "plaintext")
    signature = _parse_hex(req.signature, "signature")

    async with app.state.lock:
        try:
            payout = app.state.casino.claim(bet_id, handle, plaintext,
                                            signature,
                                            principal=player)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)

    return ClaimResponse(
        bet_id=bet_id,
        payout=str(payout),
        balance=str(_balance(player)),
    )


@app.post("/v1/liquidity/deposit")
async def deposit(req: LiquidityRequest, player: Player) -> PositionResponse:
    amount = _parse_amount(req.amount)
    async with app.state.lock:
        try:
            pos = app.state.casino.deposit(player, amount)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)
    return _position_response(pos)


@app.post("/v1/liquidity/withdraw")
async def withdraw(req: LiquidityRequest, player: Player) -> WithdrawResponse:
    """Withdraw principal plus all accrued yield."""
    amount = _parse_amount(req.amount)
    async with app.state.lock:
        try:
            payout = app.state.casino.withdraw(player, amount)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)
    pos = app.state.casino.liquidity.position(player)
    return WithdrawResponse(payout=str(payout),
                            position=_position_response(pos))


@app.get("/v1/liquidity/position")
async def get_position(player: Player) -> PositionResponse:
    try:
        pos = app.state.casino.liquidity.position(player)
    except CasinoError as e:
        raise translate_engine_error(e)
    return _position_response(pos)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@app.post("/v1/admin/fund")
async def admin_fund(req: FundRequest, _: HouseOperator) -> FundResponse:
    """Mint host balance to a principal (a player or the house)."""
    amount = _parse_amount(req.amount)
    async with app.state.lock:
        try:
            balance = app.state.casino.fund(req.username, amount)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)
    return FundResponse(username=req.username, balance=str(balance))


@app.post("/v1/admin/vault")
async def admin_vault(req: VaultRequest, _: HouseOperator) -> PoolResponse:
    """Seed both pools from the house balance."""
    amount = _parse_amount(req.amount)
    async with app.state.lock:
        try:
            app.state.casino.initialize_vault(req.house, amount)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)
    return await get_pool()


@app.post("/v1/admin/policy")
async def admin_policy(req: PolicyRequest, _: HouseOperator) -> PolicyResponse:
    """Set the house edge for new bets and the pool's yield rate."""
    async with app.state.lock:
        try:
            policy = app.state.casino.set_policy(req.house_edge_bps,
                                                 req.yield_rate_bps)
            _save()
        except CasinoError as e:
            raise translate_engine_error(e)
    return PolicyResponse(
        house_edge_bps=policy.house_edge_bps,
        yield_rate_bps=app.state.casino.liquidity.pool.config.yield_rate_bps,
        min_bet=str(policy.min_bet),
        max_bet=str(policy.max_bet),
    )
