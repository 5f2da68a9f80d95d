from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlmodel import Session

from ..config import settings
from ..database import get_session
from ..schemas import ContactIn
from ..services.admin import ContactService
from ..utils.rate_limit import enforce_rate_limit

router = APIRouter(prefix="/contact", tags=["contact"])


@router.post("", status_code=201)
def submit_contact(payload: ContactIn, request: Request, tasks: BackgroundTasks,
                   db: Session = Depends(get_session)):
    enforce_rate_limit(request, settings.CONTACT_RATE_LIMIT_PER_MIN)
    row = ContactService(db, tasks).submit(payload.name, payload.email, payload.subject, payload.message)
    return {"message": "Thank you for your message. We will get back to you soon.", "id": row.id}
