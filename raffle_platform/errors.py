"""
errors.py - Error taxonomy for the raffle core.

Every error carries a stable ``kind`` code that API clients can branch on and
a human-readable ``message`` that is safe to show to the user. Routers map
``http_status`` straight onto HTTPException.
"""

from typing import Any, Dict

_STATUS_BY_KIND: Dict[str, int] = {}


class RaffleError(Exception):
    """Base class for all raffle core errors."""

    kind = "raffle_error"
    http_status = 400
    default_message = "Raffle operation failed"

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        _STATUS_BY_KIND[cls.kind] = cls.http_status

    def __init__(self, message: str = "", **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.kind, "message": self.message}


# ── Lookup ────────────────────────────────────────────────────────────────

class RaffleNotFound(RaffleError):
    kind = "raffle_not_found"
    http_status = 404
    default_message = "Raffle not found"


class RoundNotFound(RaffleError):
    kind = "round_not_found"
    http_status = 404
    default_message = "Round not found"


# ── Round lifecycle ───────────────────────────────────────────────────────

class NoActiveRound(RaffleError):
    kind = "no_active_round"
    http_status = 503
    default_message = "No active round is available right now, please try again"


class RoundClosed(RaffleError):
    kind = "round_closed"
    http_status = 409
    default_message = "This round is closed"


class DuplicateRound(RaffleError):
    kind = "duplicate_round"
    http_status = 409
    default_message = "A round with this number already exists"


class InvalidTransition(RaffleError):
    kind = "invalid_transition"
    http_status = 409
    default_message = "Round status change not allowed"


class AggregateRegression(InvalidTransition):
    kind = "aggregate_regression"
    default_message = "Round aggregates may not decrease"


class StoreUnavailable(RaffleError):
    kind = "store_unavailable"
    http_status = 503
    default_message = "Storage is temporarily unavailable"


# ── Entries ───────────────────────────────────────────────────────────────

class InvalidWallet(RaffleError):
    kind = "invalid_wallet"
    default_message = "A wallet address is required"


class InvalidTicketCount(RaffleError):
    kind = "invalid_ticket_count"
    default_message = "Invalid ticket count"


class AlreadyEntered(RaffleError):
    kind = "already_entered"
    http_status = 409
    default_message = "You have already entered this round"


class PaymentRejected(RaffleError):
    kind = "payment_rejected"
    http_status = 402
    default_message = "Payment was rejected"


class PaymentTimeout(RaffleError):
    kind = "payment_timeout"
    http_status = 504
    default_message = "Payment is still pending, it will be settled shortly"


class Abandoned(RaffleError):
    kind = "abandoned"
    http_status = 499
    default_message = "Request was abandoned before it completed"


# ── Draws and claims ──────────────────────────────────────────────────────

class RoundNotEnded(RaffleError):
    kind = "round_not_ended"
    http_status = 409
    default_message = "Round has not ended yet"


class CommitMissing(RaffleError):
    kind = "commit_missing"
    http_status = 409
    default_message = "No commitment was recorded for this round"


class CommitMismatch(RaffleError):
    kind = "commit_mismatch"
    http_status = 409
    default_message = "Revealed payload does not match the commitment"


class NoEntrants(RaffleError):
    kind = "no_entrants"
    http_status = 409
    default_message = "Round has no confirmed entries"


class NotWinner(RaffleError):
    kind = "not_winner"
    http_status = 403
    default_message = "Only the round winner can claim this prize"


class AlreadyClaimed(RaffleError):
    kind = "already_claimed"
    http_status = 409
    default_message = "Prize has already been claimed"


# ── Payment gateway ───────────────────────────────────────────────────────

class PaymentError(RaffleError):
    """Raised by payment gateways; the orchestrator maps it to PaymentRejected."""

    kind = "payment_error"
    http_status = 402
    default_message = "Payment failed"


class UserRejected(PaymentError):
    kind = "user_rejected"
    default_message = "Transaction was rejected in the wallet"


class InsufficientFunds(PaymentError):
    kind = "insufficient_funds"
    default_message = "Insufficient funds for this transaction"


class NetworkError(PaymentError):
    kind = "network_error"
    http_status = 502
    default_message = "Payment network is unreachable"


def http_status_for(kind: str) -> int:
    """HTTP status of the error class registered under *kind*."""
    return _STATUS_BY_KIND.get(kind, RaffleError.http_status)
