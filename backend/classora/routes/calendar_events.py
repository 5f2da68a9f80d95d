from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor
from ..database import get_session
from ..schemas import CalendarEventIn
from ..services.calendar import CalendarService

router = APIRouter(prefix="/calendar-events", tags=["calendar"])


@router.post("", status_code=201)
def create_event(payload: CalendarEventIn, user: models.User = Depends(require_professor),
                 db: Session = Depends(get_session)):
    return CalendarService(db).create(user, payload.model_dump())


@router.get("")
def list_events(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return {"events": CalendarService(db).list(user)}


@router.delete("/{event_id}")
def delete_event(event_id: int, user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    CalendarService(db).delete(user, event_id)
    return {"message": "Event deleted successfully"}
