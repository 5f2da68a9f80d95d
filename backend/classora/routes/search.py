from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..services.directory import SearchService

router = APIRouter(prefix="/search", tags=["search"])


@router.get("")
def search(q: str = "", user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return SearchService(db).search(user, q)
