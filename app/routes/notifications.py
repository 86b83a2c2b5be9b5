# In-app notification inbox.
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from .. import models, schemas
from ..services import notifications as notification_service
from .auth import get_current_user

router = APIRouter()


@router.get("/notifications", response_model=List[schemas.NotificationRead])
def list_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> List[models.Notification]:
    return notification_service.list_notifications(db, user, unread_only=unread_only, limit=limit)


@router.post("/notifications/{notification_id}/read", response_model=schemas.NotificationRead)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
) -> models.Notification:
    return notification_service.mark_read(db, notification_id, user)
