"""
Engine exceptions. Every failure an engine can raise is one of these.

Five categories, each aborting the whole operation:
  ValidationError    bad input, rejected before any state changes
  AuthenticityError  claim presented something we can't trust
  StateError         the entity is in the wrong state (or missing)
  ResourceError      not enough funds to complete the operation
  Overflow           checked arithmetic left the u64 domain

OracleError covers the two ways a confidential-compute call can fail.

Each class carries a machine-readable `code` used by the API and CLI.
"""


class CasinoError(Exception):
    code = "casino_error"


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

class ValidationError(CasinoError):
    code = "invalid_request"


class AuthenticityError(CasinoError):
    code = "not_authentic"


class StateError(CasinoError):
    code = "invalid_state"


class ResourceError(CasinoError):
    code = "insufficient_resources"


class Overflow(CasinoError, ArithmeticError):
    code = "overflow"


class OracleError(CasinoError):
    code = "oracle_error"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class MinimumBet(ValidationError):
    code = "amount_too_small"


class MaximumBet(ValidationError):
    code = "amount_too_large"


class MissingChoice(ValidationError):
    code = "missing_choice"


class InvalidPolicy(ValidationError):
    code = "invalid_policy"


# ---------------------------------------------------------------------------
# Authenticity
# ---------------------------------------------------------------------------

class HandleMismatch(AuthenticityError):
    code = "handle_mismatch"


class InvalidDecryptionProof(AuthenticityError):
    code = "invalid_decryption_proof"


class NotBetOwner(AuthenticityError):
    code = "not_bet_owner"


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class AlreadyClaimed(StateError):
    code = "already_claimed"


class DuplicateBet(StateError):
    code = "duplicate_bet"


class BetNotFound(StateError):
    code = "bet_not_found"


class PositionNotFound(StateError):
    code = "position_not_found"


class AccountNotFound(StateError):
    code = "account_not_found"


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

class InsufficientFunds(ResourceError):
    """A host balance is short for a plain transfer."""
    code = "insufficient_funds"


class InsufficientVaultFunds(ResourceError):
    """Primary + backstop together can't cover a payout."""
    code = "insufficient_vault_funds"


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------

class OracleUnavailable(OracleError):
    code = "oracle_unavailable"


class OracleRejected(OracleError):
    code = "oracle_rejected"
