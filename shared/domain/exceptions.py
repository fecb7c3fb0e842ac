"""
Settlement Error Taxonomy

Every failure the booking lifecycle and settlement engine reports to its
callers derives from SettlementError. Each error carries a stable `code`
(used by the API layer) and a `retryable` flag:

- Validation errors are local and surfaced immediately.
- Retryable errors may be retried with the same idempotency key.
- Gateway rejections need explicit operator action.
"""

from __future__ import annotations

from decimal import Decimal


class SettlementError(Exception):
    """Base class for all engine errors"""

    code = "settlement_error"
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code)


class InvalidTransition(SettlementError):
    """The requested status transition is not allowed"""

    code = "invalid_transition"

    def __init__(self, entity: str, current: str, target: str, message: str = ""):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move {entity} from {current} to {target}"
        )


class ConcurrentModification(SettlementError):
    """The record was changed by a concurrent request"""

    code = "concurrent_modification"
    retryable = True


class InvalidRateConfig(SettlementError):
    """Commission percentages are out of bounds"""

    code = "invalid_rate_config"


class RefundExceedsPaid(SettlementError):
    """Refund amount exceeds what the guest has paid"""

    code = "refund_exceeds_paid"

    def __init__(self, requested: Decimal, refundable: Decimal, currency: str):
        self.requested = requested
        self.refundable = refundable
        self.currency = currency
        super().__init__(
            f"Refund of {requested} {currency} exceeds refundable balance "
            f"of {refundable} {currency}"
        )


class DisputeAlreadyOpen(SettlementError):
    """A dispute is already open for this booking"""

    code = "dispute_already_open"


class GatewayTimeout(SettlementError):
    """The gateway did not answer in time; the outcome is unknown"""

    code = "gateway_timeout"
    retryable = True


class GatewayRejected(SettlementError):
    """The gateway refused the operation"""

    code = "gateway_rejected"

    def __init__(self, reason: str = ""):
        self.reason = reason or "rejected"
        super().__init__(f"Gateway rejected the request: {self.reason}")


class InsufficientPayoutBalance(SettlementError):
    """The host's unbatched earnings are below the payout minimum"""

    code = "insufficient_payout_balance"

    def __init__(self, available: Decimal, minimum: Decimal, currency: str):
        self.available = available
        self.minimum = minimum
        self.currency = currency
        super().__init__(
            f"Available {available} {currency} is below the minimum payout "
            f"of {minimum} {currency}"
        )


class IdempotencyKeyReused(SettlementError):
    """The idempotency key was already used for a different request"""

    code = "idempotency_key_reused"


class PayoutAccountMissing(SettlementError):
    """The host has no payout account configured"""

    code = "payout_account_missing"


class LedgerImmutable(SettlementError):
    """Settled financial records cannot be changed or deleted"""

    code = "ledger_immutable"
