from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..schemas import AcceptInvitationIn
from ..services.classes import InvitationService

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post("/accept")
def accept_invitation(payload: AcceptInvitationIn, user: models.User = Depends(get_current_user),
                      db: Session = Depends(get_session)):
    return InvitationService(db).accept(user, payload.token)


@router.get("/{token}")
def describe_invitation(token: str, db: Session = Depends(get_session)):
    """Public lookup used by the invitation landing page."""
    return InvitationService(db).describe(token)
