"""
Idempotency store

State-changing operations accept a caller-supplied key. The first request
with a key stores its outcome in the same atomic block as its effects;
a repeat with the same key and payload gets the stored outcome back and
posts nothing. A key reused for a different operation or payload is an
error. Lookups must run after the caller has locked the affected row so
that two concurrent requests with one key serialize.
"""

from __future__ import annotations

import hashlib
import json
import logging

from django.db import IntegrityError, transaction  # type: ignore

from shared.domain.exceptions import ConcurrentModification, IdempotencyKeyReused

from .models import IdempotencyRecord

logger = logging.getLogger(__name__)


def fingerprint(operation: str, payload: dict) -> str:
    canonical = json.dumps(
        {"operation": operation, "payload": payload}, sort_keys=True, default=str
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


def lookup(key: str, operation: str, payload: dict) -> dict | None:
    """Stored outcome for ``key``, or None when the key is new."""
    if not key:
        return None
    record = IdempotencyRecord.objects.filter(key=key).first()
    if record is None:
        return None
    if record.operation != operation or record.fingerprint != fingerprint(operation, payload):
        raise IdempotencyKeyReused(
            f"Idempotency key {key!r} was already used for a different {record.operation} request"
        )
    logger.info(f"Replaying {operation} for idempotency key {key}")
    return record.outcome


def remember(key: str, operation: str, payload: dict, outcome: dict) -> None:
    if not key:
        return
    try:
        with transaction.atomic():
            IdempotencyRecord.objects.create(
                key=key,
                operation=operation,
                fingerprint=fingerprint(operation, payload),
                outcome=outcome,
            )
    except IntegrityError as exc:
        raise ConcurrentModification(
            f"Idempotency key {key!r} is being used by a concurrent request"
        ) from exc
