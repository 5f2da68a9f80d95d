from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..schemas import NotificationCreateIn, NotificationMarkIn
from ..services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_notifications(limit: int = Query(10, ge=1, le=50), unread_only: bool = False,
                       user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return NotificationService(db).list(user, limit, unread_only)


@router.post("", status_code=201)
def create_notification(payload: NotificationCreateIn, user: models.User = Depends(get_current_user),
                        db: Session = Depends(get_session)):
    return NotificationService(db).create(user, payload.title, payload.message, payload.type, payload.link,
                                          payload.user_id)


@router.put("")
def mark_notifications(payload: NotificationMarkIn, user: models.User = Depends(get_current_user),
                       db: Session = Depends(get_session)):
    return NotificationService(db).mark_read(user, payload.notification_ids, payload.mark_all_as_read)


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, user: models.User = Depends(get_current_user),
                        db: Session = Depends(get_session)):
    NotificationService(db).delete(user, notification_id)
    return {"message": "Notification deleted"}
