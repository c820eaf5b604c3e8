"""
Pydantic request/response models for the API.
Amounts and handles are strings: u64 amounts and u128 handles don't
survive a trip through IEEE 754 doubles. Byte strings are hex.
"""

from pydantic import BaseModel


# --- Auth ---

class RegisterRequest(BaseModel):
    username: str

class RegisterResponse(BaseModel):
    api_key: str
    username: str
    balance: str

class RotateKeyResponse(BaseModel):
    api_key: str


# --- Account ---

class AccountResponse(BaseModel):
    username: str
    balance: str
    bets: list[int]


# --- Games ---

class PlayRequest(BaseModel):
    seed: int
    amount: str
    encrypted_choice: str | None = None

class BetResponse(BaseModel):
    bet_id: int
    player: str
    game: str
    params: dict
    seed: int
    amount: str
    timestamp: int
    choice_handle: str
    payout_handle: str
    outcome_handles: list[str]
    claimed: bool
    payout: str | None

class RevealRequest(BaseModel):
    handle: str | None = None

class AttestationResponse(BaseModel):
    handle: str
    plaintext: str
    signature: str

class ClaimRequest(BaseModel):
    handle: str
    plaintext: str
    signature: str = ""

class ClaimResponse(BaseModel):
    bet_id: int
    payout: str
    balance: str

class SealRequest(BaseModel):
    value: str

class SealResponse(BaseModel):
    ciphertext: str


# --- Liquidity ---

class LiquidityRequest(BaseModel):
    amount: str

class PositionResponse(BaseModel):
    depositor: str
    principal: str
    accrued_yield: str
    pending_yield: str
    deposit_time: int
    last_accrual_time: int

class WithdrawResponse(BaseModel):
    payout: str
    position: PositionResponse

class PoolResponse(BaseModel):
    total_deposits: str
    yield_rate_bps: int
    time_units_per_year: int
    primary_balance: str
    backstop_balance: str


# --- Admin ---

class FundRequest(BaseModel):
    username: str
    amount: str

class FundResponse(BaseModel):
    username: str
    balance: str

class VaultRequest(BaseModel):
    house: str
    amount: str

class PolicyRequest(BaseModel):
    house_edge_bps: int
    yield_rate_bps: int

class PolicyResponse(BaseModel):
    house_edge_bps: int
    yield_rate_bps: int
    min_bet: str
    max_bet: str

class HealthResponse(BaseModel):
    status: str
    bets: int
    accounts: int
