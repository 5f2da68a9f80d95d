"""In-app notifications."""

from typing import List, Optional

from sqlmodel import Session, select

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied
from .common import iso

NOTIFICATION_TYPES = ("assignment", "quiz", "announcement", "general", "system", "assignment_graded", "new_note")


def serialize_notification(n: models.Notification) -> dict:
    return {
        "id": n.id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "link": n.link,
        "is_read": n.is_read,
        "created_at": iso(n.created_at),
    }


class NotificationService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NotificationRepository(session)

    def list(self, user: models.User, limit: int = 10, unread_only: bool = False) -> dict:
        rows = self.repo.list_for_user(user.id, limit=limit, unread_only=unread_only)
        return {"notifications": [serialize_notification(n) for n in rows],
                "unread_count": self.repo.unread_count(user.id)}

    def create(self, user: models.User, title: str, message: str, type: str = "general",
               link: Optional[str] = None, target_user_id: Optional[int] = None) -> dict:
        """Users notify themselves; professors and admins may target others."""
        target_id = target_user_id or user.id
        if target_id != user.id:
            if user.role == models.Role.STUDENT:
                raise PermissionDenied("Students can only create notifications for themselves")
            if repositories.UserRepository(self.session).get(target_id) is None:
                raise NotFoundError("Target user not found")
        n = self.repo.save(models.Notification(user_id=target_id, title=title, message=message, type=type, link=link))
        return serialize_notification(n)

    def mark_read(self, user: models.User, notification_ids: List[int], mark_all: bool = False) -> dict:
        if not mark_all and not notification_ids:
            raise ValueError("notification_ids or mark_all_as_read is required")
        stmt = select(models.Notification).where(models.Notification.user_id == user.id,
                                                 models.Notification.is_read == False)  # noqa: E712
        if not mark_all:
            stmt = stmt.where(models.Notification.id.in_(notification_ids))
        rows = self.session.exec(stmt).all()
        for n in rows:
            n.is_read = True
            self.session.add(n)
        self.session.commit()
        return {"updated": len(rows), "unread_count": self.repo.unread_count(user.id)}

    def delete(self, user: models.User, notification_id: int) -> None:
        n = self.repo.get(notification_id)
        if n is None or n.user_id != user.id:
            raise NotFoundError("Notification not found")
        self.repo.delete(n)
