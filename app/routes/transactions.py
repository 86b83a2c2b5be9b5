# Ledger endpoints for the renter spend and provider earnings dashboards.
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..services import ledger
from .auth import get_current_user

router = APIRouter()

LedgerRole = Literal["renter", "provider"]


def _default_role(user: models.User) -> str:
    return "provider" if user.role == "provider" else "renter"


@router.get("/transactions", response_model=List[schemas.TransactionRead])
def list_transactions(
    role: Optional[LedgerRole] = Query(None),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Transaction]:
    """
    The caller's ledger rows, newest first.

    role=renter lists what they paid; role=provider what they were paid.
    Defaults to the account's own role.
    """
    role = role or _default_role(user)
    if role == "provider":
        return ledger.query_by_provider(db, user.id)
    return ledger.query_by_renter(db, user.id)


@router.get("/transactions/summary", response_model=schemas.LedgerSummary)
def transactions_summary(
    role: Optional[LedgerRole] = Query(None),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> schemas.LedgerSummary:
    role = role or _default_role(user)
    return schemas.LedgerSummary(**ledger.summarize(db, user.id, role))
