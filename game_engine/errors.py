"""
GEMMINES - Engine Errors

Every failure is reported synchronously and leaves state untouched.

  ValidationError     bad input; fix it and retry
  AuthorizationError  wrong caller or not enough funds/allowance
  StateError          stale or duplicate request; safe to drop
"""


class MinesError(ValueError):
    """Base class for every engine error. `code` is stable for API clients."""
    code = "mines_error"
    http_status = 400

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class GameNotFound(MinesError):
    code = "game_not_found"
    http_status = 404


# ── Validation ──

class ValidationError(MinesError):
    code = "validation_error"
    http_status = 400


class InvalidConfiguration(ValidationError):
    code = "invalid_configuration"


class CellOutOfRange(ValidationError):
    code = "cell_out_of_range"


class CellAlreadyRevealed(ValidationError):
    code = "cell_already_revealed"


class InvalidClaim(ValidationError):
    code = "invalid_claim"


class NothingToCashOut(ValidationError):
    code = "nothing_to_cash_out"


# ── Authorization ──

class AuthorizationError(MinesError):
    code = "authorization_error"
    http_status = 403


class NotOwner(AuthorizationError):
    code = "not_owner"


class InsufficientFunds(AuthorizationError):
    code = "insufficient_funds"


class InsufficientAuthorization(AuthorizationError):
    code = "insufficient_authorization"


# ── State ──

class StateError(MinesError):
    code = "state_error"
    http_status = 409


class GameNotActive(StateError):
    code = "game_not_active"


class AbandonTooEarly(StateError):
    code = "abandon_too_early"


class SeedNotRevealed(StateError):
    code = "seed_not_revealed"


class ClaimSettlementDisabled(StateError):
    code = "claim_settlement_disabled"


class StaleRecord(StateError):
    code = "stale_record"
