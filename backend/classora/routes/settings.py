import json

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..schemas import UserSettingsIn
from ..services.settings import SettingsService

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
def get_settings(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    return SettingsService(db).get(user)


@router.put("")
def update_settings(payload: UserSettingsIn, user: models.User = Depends(get_current_user),
                    db: Session = Depends(get_session)):
    return SettingsService(db).update(user, payload.model_dump(exclude_unset=True))


@router.get("/public")
def public_settings(db: Session = Depends(get_session)):
    """Site settings the login and landing pages need before sign-in."""
    return SettingsService(db).public()


@router.get("/export")
def export_data(user: models.User = Depends(get_current_user), db: Session = Depends(get_session)):
    data = SettingsService(db).export(user)
    filename = f"classora-data-{user.id}.json"
    return Response(content=json.dumps(data, indent=2, default=str), media_type="application/json",
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})
