# Transaction ledger: append-only payment attempts and the per-user queries behind
# dashboards and receipts. Rows are never updated or deleted.
from __future__ import annotations

import random
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models
from ..errors import TransientStoreError

DEFAULT_REFERENCE_PREFIX = "RNT"


def generate_reference_id(prefix: str = DEFAULT_REFERENCE_PREFIX, rng: Optional[random.Random] = None) -> str:
    """Human-shown code such as RNT_483920."""
    rng = rng or random
    return f"{prefix}_{rng.randint(100000, 999999)}"


def unique_reference_id(
    db: Session,
    prefix: str = DEFAULT_REFERENCE_PREFIX,
    rng: Optional[random.Random] = None,
    attempts: int = 20,
) -> str:
    """Draw reference ids until one is not yet in the ledger."""
    for _ in range(attempts):
        ref = generate_reference_id(prefix, rng)
        taken = db.query(models.Transaction.id).filter(models.Transaction.reference_id == ref).first()
        if taken is None:
            return ref
    raise TransientStoreError("Could not allocate a unique transaction reference")


def record_transaction(db: Session, payload: Dict[str, Any]) -> int:
    """
    Append one attempt and return its id.

    Flushes but does not commit, so the caller can make the row and the
    booking update a single unit of work.
    """
    tx = models.Transaction(**payload)
    db.add(tx)
    db.flush()
    return tx.id


def _newest_first(q):
    return q.order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())


def query_by_renter(db: Session, renter_id: int) -> List[models.Transaction]:
    return _newest_first(db.query(models.Transaction).filter(models.Transaction.renter_id == renter_id)).all()


def query_by_provider(db: Session, provider_id: int) -> List[models.Transaction]:
    return _newest_first(db.query(models.Transaction).filter(models.Transaction.provider_id == provider_id)).all()


def query_by_booking(db: Session, booking_id: int) -> List[models.Transaction]:
    return _newest_first(db.query(models.Transaction).filter(models.Transaction.booking_id == booking_id)).all()


def summarize(db: Session, user_id: int, role: str) -> Dict[str, Any]:
    """Success/failure counts and the successful total: earnings for providers, spend for renters."""
    column = models.Transaction.provider_id if role == "provider" else models.Transaction.renter_id
    rows = (
        db.query(models.Transaction.status, func.count(models.Transaction.id), func.coalesce(func.sum(models.Transaction.amount), 0))
        .filter(column == user_id)
        .group_by(models.Transaction.status)
        .all()
    )
    summary = {"role": role, "success_count": 0, "failed_count": 0, "total_amount": 0}
    for status_val, count, total in rows:
        if status_val == "success":
            summary["success_count"] = int(count)
            summary["total_amount"] = int(total or 0)
        elif status_val == "failed":
            summary["failed_count"] = int(count)
    return summary
