"""DRF exception handler translating settlement errors into API responses."""

from __future__ import annotations

import logging

from rest_framework import status  # type: ignore
from rest_framework.response import Response  # type: ignore
from rest_framework.views import exception_handler as drf_exception_handler  # type: ignore

from shared.domain import exceptions as errors

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    errors.InvalidTransition: status.HTTP_409_CONFLICT,
    errors.ConcurrentModification: status.HTTP_409_CONFLICT,
    errors.DisputeAlreadyOpen: status.HTTP_409_CONFLICT,
    errors.LedgerImmutable: status.HTTP_409_CONFLICT,
    errors.InvalidRateConfig: status.HTTP_400_BAD_REQUEST,
    errors.RefundExceedsPaid: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.InsufficientPayoutBalance: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.IdempotencyKeyReused: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.PayoutAccountMissing: status.HTTP_422_UNPROCESSABLE_ENTITY,
    errors.GatewayRejected: status.HTTP_402_PAYMENT_REQUIRED,
    errors.GatewayTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
}


def settlement_exception_handler(exc, context):
    """Map SettlementError subclasses to `{code, detail, retryable}` payloads."""

    if isinstance(exc, errors.SettlementError):
        http_status = status.HTTP_400_BAD_REQUEST
        for error_type in type(exc).__mro__:
            if error_type in STATUS_BY_ERROR:
                http_status = STATUS_BY_ERROR[error_type]
                break
        view = context.get("view")
        logger.info(
            f"{exc.code} raised in {view.__class__.__name__ if view else 'unknown view'}: {exc.message}"
        )
        return Response(
            {"code": exc.code, "detail": exc.message, "retryable": exc.retryable},
            status=http_status,
        )

    return drf_exception_handler(exc, context)
