from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_professor, require_student
from ..database import get_session
from ..schemas import NoteCreateIn, NoteUpdateIn
from ..services.notes import NoteService

router = APIRouter(prefix="/notes", tags=["notes"])


@router.post("", status_code=201)
def create_note(payload: NoteCreateIn, tasks: BackgroundTasks, user: models.User = Depends(require_professor),
                db: Session = Depends(get_session)):
    """Create a note; publishing it notifies the class."""
    return NoteService(db, tasks).create(user, payload.model_dump())


@router.get("")
def list_notes(
    query: Optional[str] = None,
    class_id: Optional[int] = None,
    professor_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = Query(20, ge=1, le=50),
    offset: int = Query(0, ge=0),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_session),
):
    return NoteService(db).list(user, query, class_id, professor_id, status, limit, offset)


@router.get("/{note_id}")
def get_note(note_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return NoteService(db).get(user, note_id)


@router.put("/{note_id}")
def update_note(note_id: int, payload: NoteUpdateIn, tasks: BackgroundTasks,
                user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    return NoteService(db, tasks).update(user, note_id, payload.model_dump(exclude_unset=True))


@router.delete("/{note_id}")
def delete_note(note_id: int, user: models.User = Depends(require_professor), db: Session = Depends(get_session)):
    NoteService(db).delete(user, note_id)
    return {"message": "Note deleted successfully"}


@router.post("/{note_id}/view")
def view_note(note_id: int, user: models.User = Depends(require_student), db: Session = Depends(get_session)):
    return NoteService(db).record_view(user, note_id)
