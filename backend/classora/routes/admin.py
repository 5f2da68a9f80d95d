"""Administration endpoints. Every route requires the ADMIN role."""

import json
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse, Response
from sqlmodel import Session

from .. import models
from ..auth import require_admin
from ..database import get_session
from ..schemas import (AdminUserUpdateIn, BackupCreateIn, BackupSettingsIn, ContactReplyIn, CrashUpdateIn,
                       EmailTestIn, SystemSettingsIn, UserStatusIn)
from ..services.admin import AdminService

router = APIRouter(prefix="/admin", tags=["admin"])


# --- users ------------------------------------------------------------------

@router.get("/users")
def list_users(query: Optional[str] = None, role: Optional[str] = None, status: Optional[str] = None,
               limit: int = Query(20, ge=1, le=100), offset: int = Query(0, ge=0),
               admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).list_users(query, role, status, limit, offset)


@router.get("/users/{user_id}")
def get_user(user_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).get_user(user_id)


@router.put("/users/{user_id}")
def update_user(user_id: int, payload: AdminUserUpdateIn, admin: models.User = Depends(require_admin),
                db: Session = Depends(get_session)):
    return AdminService(db).update_user(admin, user_id, payload.model_dump(exclude_unset=True))


@router.put("/users/{user_id}/status")
def set_user_status(user_id: int, payload: UserStatusIn, admin: models.User = Depends(require_admin),
                    db: Session = Depends(get_session)):
    return AdminService(db).set_user_status(admin, user_id, payload.status)


@router.delete("/users/{user_id}")
def delete_user(user_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    AdminService(db).delete_user(admin, user_id)
    return {"message": "User deleted successfully"}


# --- contact messages -------------------------------------------------------

@router.get("/messages")
def list_messages(unread_only: bool = False, admin: models.User = Depends(require_admin),
                  db: Session = Depends(get_session)):
    return AdminService(db).list_messages(unread_only)


@router.put("/messages/{message_id}/read")
def mark_message_read(message_id: int, admin: models.User = Depends(require_admin),
                      db: Session = Depends(get_session)):
    return AdminService(db).mark_message_read(message_id)


@router.post("/messages/{message_id}/reply")
def reply_message(message_id: int, payload: ContactReplyIn, admin: models.User = Depends(require_admin),
                  db: Session = Depends(get_session)):
    """Email the sender and store the reply on the message."""
    return AdminService(db).reply_message(message_id, payload.reply_message, payload.admin_name or admin.name)


@router.delete("/messages/{message_id}")
def delete_message(message_id: int, admin: models.User = Depends(require_admin),
                   db: Session = Depends(get_session)):
    AdminService(db).delete_message(message_id)
    return {"message": "Message deleted successfully"}


# --- system settings --------------------------------------------------------

@router.get("/settings")
def get_system_settings(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).get_system_settings()


@router.put("/settings")
def update_system_settings(payload: SystemSettingsIn, admin: models.User = Depends(require_admin),
                           db: Session = Depends(get_session)):
    return AdminService(db).update_system_settings(payload.model_dump(exclude_unset=True))


# --- backups ----------------------------------------------------------------

@router.get("/backup")
def list_backups(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).list_backups()


@router.post("/backup", status_code=201)
def create_backup(payload: BackupCreateIn, admin: models.User = Depends(require_admin),
                  db: Session = Depends(get_session)):
    return AdminService(db).create_backup(admin, payload.name, payload.description)


@router.get("/backup/settings")
def get_backup_settings(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).backup_settings()


@router.put("/backup/settings")
def update_backup_settings(payload: BackupSettingsIn, admin: models.User = Depends(require_admin),
                           db: Session = Depends(get_session)):
    return AdminService(db).update_backup_settings(payload.model_dump(exclude_unset=True))


@router.get("/backup/{backup_id}/download")
def download_backup(backup_id: int, admin: models.User = Depends(require_admin),
                    db: Session = Depends(get_session)):
    path = AdminService(db).backup_file(backup_id)
    return FileResponse(path, media_type="application/octet-stream", filename=path.name)


@router.post("/backup/{backup_id}/restore")
def restore_backup(backup_id: int, admin: models.User = Depends(require_admin),
                   db: Session = Depends(get_session)):
    return AdminService(db).restore_backup(backup_id)


@router.delete("/backup/{backup_id}")
def delete_backup(backup_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    AdminService(db).delete_backup(backup_id)
    return {"message": "Backup deleted successfully"}


# --- crash reports ----------------------------------------------------------

@router.get("/crashes")
def list_crashes(type: Optional[str] = None, severity: Optional[str] = None, resolved: Optional[bool] = None,
                 limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
                 admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).list_crashes(type, severity, resolved, limit, offset)


@router.get("/crashes/export")
def export_crashes(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    data = AdminService(db).export_crashes()
    return Response(content=json.dumps(data, indent=2), media_type="application/json",
                    headers={"Content-Disposition": 'attachment; filename="crash-reports.json"'})


@router.get("/crashes/{crash_id}")
def get_crash(crash_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).get_crash(crash_id)


@router.put("/crashes/{crash_id}")
def update_crash(crash_id: int, payload: CrashUpdateIn, admin: models.User = Depends(require_admin),
                 db: Session = Depends(get_session)):
    return AdminService(db).resolve_crash(crash_id, payload.resolved)


@router.delete("/crashes/{crash_id}")
def delete_crash(crash_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    AdminService(db).delete_crash(crash_id)
    return {"message": "Crash report deleted successfully"}


# --- health and email -------------------------------------------------------

@router.get("/performance")
def performance(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    """Request timings, storage usage and a health verdict."""
    return AdminService(db).performance()


@router.get("/dashboard-stats")
def dashboard_stats(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).dashboard_stats()


@router.post("/test-email")
def test_email(payload: EmailTestIn, admin: models.User = Depends(require_admin),
               db: Session = Depends(get_session)):
    return AdminService(db).send_test_email(payload.to)


@router.get("/email/verify")
def verify_email(admin: models.User = Depends(require_admin), db: Session = Depends(get_session)):
    return AdminService(db).verify_email()
