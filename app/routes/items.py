# Item catalog endpoints.
# Providers list and manage their own items; anyone can browse by availability and category.
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from .auth import require_provider, get_current_user, get_current_user_optional
from ..rate_limit import rate_limit

router = APIRouter()


@router.get("/items", response_model=List[schemas.ItemRead])
def list_items(
    available: Optional[bool] = Query(None),
    category: Optional[schemas.Category] = Query(None),
    mine: bool = Query(False),
    db: Session = Depends(get_db),
    user: Optional[models.User] = Depends(get_current_user_optional),
):
    """
    Browse items, newest first.

    - available/category narrow the marketplace view.
    - mine=true returns the caller's own listings (provider dashboard).
    """
    q = db.query(models.Item)
    if mine:
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sign in to see your items")
        q = q.filter(models.Item.owner_id == user.id)
    if available is not None:
        q = q.filter(models.Item.available.is_(available))
    if category is not None:
        q = q.filter(models.Item.category == category)
    return q.order_by(models.Item.id.desc()).all()


@router.get("/items/{item_id}", response_model=schemas.ItemRead)
def get_item(item_id: int, db: Session = Depends(get_db)):
    obj = db.get(models.Item, item_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    return obj


@router.post(
    "/items",
    response_model=schemas.ItemRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("write"))],
)
def create_item(payload: schemas.ItemCreate, db: Session = Depends(get_db), user: models.User = Depends(require_provider)):
    """List a new item owned by the authenticated provider; new items start available."""
    obj = models.Item(
        owner_id=user.id,
        provider_name=user.name,
        title=payload.title,
        description=payload.description,
        category=payload.category,
        price=payload.price,
        available=True,
        images=[img.model_dump() for img in payload.images],
    )
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@router.patch(
    "/items/{item_id}/availability",
    response_model=schemas.ItemRead,
    dependencies=[Depends(rate_limit("write"))],
)
def set_availability(
    item_id: int,
    payload: schemas.AvailabilityUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    obj = db.get(models.Item, item_id)
    if not obj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Item not found")
    if obj.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this item")
    obj.available = payload.available
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
