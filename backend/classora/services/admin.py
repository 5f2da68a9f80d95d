"""Administration: user management, contact inbox, system settings,
database backups, crash reports and runtime health."""

import logging
import shutil
import traceback
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import BackgroundTasks
from sqlmodel import Session

from .. import database, mailer, models, repositories
from ..config import BASE, settings
from ..errors import NotFoundError, PermissionDenied
from ..utils import metrics
from ..utils.uploads import remove_upload
from .common import iso, paginate, queue_email, serialize_user, time_ago

logger = logging.getLogger("classora.admin")

SYSTEM_FIELDS = ("site_name", "site_description", "maintenance_mode", "registration_enabled",
                 "email_notifications", "max_file_size", "allowed_file_types", "session_timeout",
                 "backup_retention", "auto_backup", "backup_frequency", "backup_time", "email_host",
                 "email_port", "email_secure", "email_from", "email_from_name", "company_name",
                 "company_email", "company_phone", "address_line1", "address_line2", "city", "state",
                 "postal_code", "country", "website")
BACKUP_FIELDS = ("auto_backup", "backup_frequency", "backup_time", "backup_retention")


def profile_complete(user: models.User) -> bool:
    if user.role == models.Role.PROFESSOR:
        p = user.teacher_profile
        return bool(p and p.university and p.department)
    if user.role == models.Role.STUDENT:
        p = user.student_profile
        return bool(p and p.university and p.registration_no)
    return True


def serialize_message(m: models.ContactMessage) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "email": m.email,
        "subject": m.subject,
        "message": m.message,
        "read": m.read,
        "reply_message": m.reply_message,
        "replied_at": iso(m.replied_at),
        "created_at": iso(m.created_at),
    }


def serialize_backup(b: models.Backup) -> dict:
    return {
        "id": b.id,
        "name": b.name,
        "type": b.type,
        "status": b.status,
        "size": b.size,
        "description": b.description,
        "created_by": b.created_by,
        "created_at": iso(b.created_at),
    }


def serialize_crash(c: models.CrashReport) -> dict:
    return {
        "id": c.id,
        "type": c.type,
        "severity": c.severity,
        "message": c.message,
        "stack_trace": c.stack_trace,
        "url": c.url,
        "method": c.method,
        "user_agent": c.user_agent,
        "request_id": c.request_id,
        "user_id": c.user_id,
        "resolved": c.resolved,
        "resolved_at": iso(c.resolved_at),
        "created_at": iso(c.created_at),
    }


def record_crash(exc: BaseException, url: Optional[str] = None, method: Optional[str] = None,
                 user_agent: Optional[str] = None, request_id: Optional[str] = None,
                 user_id: Optional[int] = None) -> Optional[int]:
    """Persist an unhandled exception as a crash report and return its id.

    Uses its own session since the request session may be unusable.
    """
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    report = models.CrashReport(type="error", severity="high", message=f"{type(exc).__name__}: {exc}"[:1000],
                                stack_trace=stack, url=url, method=method, user_agent=user_agent,
                                request_id=request_id, user_id=user_id)
    try:
        with Session(database.engine) as session:
            session.add(report)
            session.commit()
            session.refresh(report)
            return report.id
    except Exception:  # noqa: BLE001
        logger.exception("crash_report_failed request_id=%s", request_id)
        return None


class ContactService:
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.repo = repositories.ContactRepository(session)

    def submit(self, name: str, email: str, subject: str, message: str) -> models.ContactMessage:
        row = self.repo.save(models.ContactMessage(name=name.strip(), email=email, subject=subject.strip(),
                                                   message=message.strip()))
        logger.info("contact_message_received id=%s", row.id)
        queue_email(self.tasks, settings.SUPPORT_EMAIL, "contact_notification",
                    {"name": row.name, "email": row.email, "subject": row.subject, "message": row.message})
        return row


class AdminService:
    def __init__(self, session: Session, tasks: Optional[BackgroundTasks] = None):
        self.session = session
        self.tasks = tasks
        self.users = repositories.UserRepository(session)
        self.messages = repositories.ContactRepository(session)
        self.backups = repositories.BackupRepository(session)
        self.crashes = repositories.CrashRepository(session)
        self.system = repositories.SettingsRepository(session)

    # --- users -------------------------------------------------------------

    def list_users(self, query=None, role=None, status=None, limit: int = 20, offset: int = 0) -> dict:
        rows, total = self.users.search(query, role, status, limit, offset)
        users = []
        for u in rows:
            out = serialize_user(u)
            out["profile_complete"] = profile_complete(u)
            users.append(out)
        return {"users": users, "pagination": paginate(total, limit, offset)}

    def _user(self, user_id: int) -> models.User:
        user = self.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_user(self, user_id: int) -> dict:
        user = self._user(user_id)
        out = serialize_user(user)
        out["profile_complete"] = profile_complete(user)
        return out

    def update_user(self, admin: models.User, user_id: int, changes: dict) -> dict:
        user = self._user(user_id)
        email = changes.get("email")
        if email and email.lower() != user.email.lower():
            if self.users.get_by_email(email):
                raise ValueError("Email is already in use")
            user.email = email.lower()
        if changes.get("role") and changes["role"] != user.role:
            if user.id == admin.id:
                raise PermissionDenied("You cannot change your own role")
            user.role = changes["role"]
        if changes.get("name"):
            user.name = changes["name"].strip()
        if "bio" in changes and changes["bio"] is not None:
            user.bio = changes["bio"]
        user.updated_at = models.utcnow()
        self.users.save(user)
        logger.info("admin_user_updated admin=%s user=%s", admin.id, user.id)
        return self.get_user(user.id)

    def set_user_status(self, admin: models.User, user_id: int, status: str) -> dict:
        if user_id == admin.id:
            raise ValueError("You cannot change your own status")
        user = self._user(user_id)
        user.status = status
        user.updated_at = models.utcnow()
        self.users.save(user)
        logger.info("admin_user_status admin=%s user=%s status=%s", admin.id, user.id, status)
        return serialize_user(user)

    def delete_user(self, admin: models.User, user_id: int) -> None:
        if user_id == admin.id:
            raise ValueError("You cannot delete your own account")
        user = self._user(user_id)
        if user.avatar:
            remove_upload(user.avatar)
        self.users.delete(user)
        logger.info("admin_user_deleted admin=%s user=%s", admin.id, user_id)

    # --- contact inbox -----------------------------------------------------

    def list_messages(self, unread_only: bool = False) -> dict:
        return {"messages": [serialize_message(m) for m in self.messages.list(unread_only)],
                "unread_count": self.messages.unread_count()}

    def _message(self, message_id: int) -> models.ContactMessage:
        row = self.messages.get(message_id)
        if row is None:
            raise NotFoundError("Message not found")
        return row

    def mark_message_read(self, message_id: int) -> dict:
        row = self._message(message_id)
        row.read = True
        return serialize_message(self.messages.save(row))

    def reply_message(self, message_id: int, reply: str, admin_name: Optional[str] = None) -> dict:
        """Email a reply to the sender; the reply is stored only if it was sent."""
        row = self._message(message_id)
        result = mailer.send_email(row.email, "contact_reply", {
            "name": row.name,
            "subject": row.subject,
            "reply_message": reply,
            "admin_name": admin_name,
            "original_message": row.message,
        })
        if not result["success"]:
            raise ValueError(f"Failed to send reply: {result['error']}")
        row.read = True
        row.reply_message = reply
        row.replied_at = models.utcnow()
        return serialize_message(self.messages.save(row))

    def delete_message(self, message_id: int) -> None:
        self.messages.delete(self._message(message_id))

    # --- system settings ---------------------------------------------------

    def get_system_settings(self) -> dict:
        row = self.system.system()
        out = {field: getattr(row, field) for field in SYSTEM_FIELDS}
        out["updated_at"] = iso(row.updated_at)
        return out

    def update_system_settings(self, changes: dict) -> dict:
        row = self.system.system()
        for field, value in changes.items():
            if field in SYSTEM_FIELDS and value is not None:
                setattr(row, field, value)
        row.updated_at = models.utcnow()
        self.session.add(row)
        self.session.commit()
        logger.info("system_settings_updated fields=%s", ",".join(sorted(changes)))
        return self.get_system_settings()

    def backup_settings(self) -> dict:
        row = self.system.system()
        return {field: getattr(row, field) for field in BACKUP_FIELDS}

    def update_backup_settings(self, changes: dict) -> dict:
        self.update_system_settings({k: v for k, v in changes.items() if k in BACKUP_FIELDS})
        return self.backup_settings()

    # --- backups -----------------------------------------------------------

    def _database_file(self) -> Path:
        path = database.sqlite_file_path()
        if path is None or not path.exists():
            raise ValueError("Backups are only supported for file-backed SQLite databases")
        return path

    def list_backups(self) -> dict:
        return {"backups": [serialize_backup(b) for b in self.backups.list()]}

    def create_backup(self, admin: Optional[models.User], name: Optional[str] = None,
                      description: Optional[str] = None, kind: str = "manual") -> dict:
        source = self._database_file()
        stamp = models.utcnow().strftime("%Y%m%d-%H%M%S-%f")
        settings.BACKUP_DIR.mkdir(parents=True, exist_ok=True)
        target = settings.BACKUP_DIR / f"classora-{stamp}.db"
        shutil.copy2(source, target)
        backup = self.backups.save(models.Backup(
            name=name or f"Backup {stamp}", type=kind, size=target.stat().st_size, path=str(target),
            description=description, created_by=admin.id if admin else None,
        ))
        logger.info("backup_created id=%s size=%s", backup.id, backup.size)
        system = self.system.system()
        if system.email_notifications:
            to = admin.email if admin else system.company_email
            mailer.send_email(to, "backup_notification", {
                "backup_name": backup.name, "size": backup.size,
                "created_by": admin.name if admin else "system",
            }, attachments=[target])
        pruned = self.prune_backups(system.backup_retention)
        out = serialize_backup(backup)
        out["pruned"] = pruned
        return out

    def prune_backups(self, retention_days: int) -> int:
        """Delete backups (rows and files) older than the retention window."""
        cutoff = models.utcnow() - timedelta(days=retention_days)
        old = self.backups.older_than(cutoff)
        for b in old:
            Path(b.path).unlink(missing_ok=True)
            self.session.delete(b)
        if old:
            self.session.commit()
            logger.info("backups_pruned count=%s", len(old))
        return len(old)

    def _backup(self, backup_id: int) -> models.Backup:
        b = self.backups.get(backup_id)
        if b is None:
            raise NotFoundError("Backup not found")
        return b

    def backup_file(self, backup_id: int) -> Path:
        path = Path(self._backup(backup_id).path)
        if not path.exists():
            raise NotFoundError("Backup file is missing")
        return path

    def delete_backup(self, backup_id: int) -> None:
        b = self._backup(backup_id)
        Path(b.path).unlink(missing_ok=True)
        self.backups.delete(b)

    def restore_backup(self, backup_id: int) -> dict:
        """Replace the live database with a backup copy.

        The backup list is re-recorded afterwards so it survives the restore.
        """
        source = self.backup_file(backup_id)
        target = self._database_file()
        known = [b.model_dump() for b in self.backups.list()]
        self.session.close()
        database.engine.dispose()
        shutil.copy2(source, target)
        with Session(database.engine) as fresh:
            present = {b.id for b in repositories.BackupRepository(fresh).list()}
            for data in known:
                if data["id"] not in present and Path(data["path"]).exists():
                    fresh.add(models.Backup(**data))
            fresh.commit()
        logger.warning("database_restored backup=%s", backup_id)
        return {"success": True, "message": "Database restored successfully", "backup_id": backup_id}

    # --- crash reports -----------------------------------------------------

    def list_crashes(self, type=None, severity=None, resolved=None, limit: int = 50, offset: int = 0) -> dict:
        rows, total = self.crashes.search(type, severity, resolved, limit, offset)
        return {"crashes": [serialize_crash(c) for c in rows], "pagination": paginate(total, limit, offset)}

    def _crash(self, crash_id: int) -> models.CrashReport:
        c = self.crashes.get(crash_id)
        if c is None:
            raise NotFoundError("Crash report not found")
        return c

    def get_crash(self, crash_id: int) -> dict:
        return serialize_crash(self._crash(crash_id))

    def resolve_crash(self, crash_id: int, resolved: bool) -> dict:
        c = self._crash(crash_id)
        c.resolved = resolved
        c.resolved_at = models.utcnow() if resolved else None
        return serialize_crash(self.crashes.save(c))

    def delete_crash(self, crash_id: int) -> None:
        self.crashes.delete(self._crash(crash_id))

    def export_crashes(self) -> dict:
        rows, total = self.crashes.search(limit=10000)
        by_severity: dict = {}
        for c in rows:
            by_severity[c.severity] = by_severity.get(c.severity, 0) + 1
        return {
            "exported_at": iso(models.utcnow()),
            "total": total,
            "unresolved": sum(1 for c in rows if not c.resolved),
            "by_severity": by_severity,
            "crashes": [serialize_crash(c) for c in rows],
        }

    # --- health ------------------------------------------------------------

    def performance(self) -> dict:
        snap = metrics.snapshot()
        db_path = database.sqlite_file_path()
        db_size = db_path.stat().st_size if db_path is not None and db_path.exists() else 0
        disk = shutil.disk_usage(db_path.parent if db_path is not None and db_path.parent.exists() else BASE)
        disk_pct = round(disk.used / disk.total * 100, 1) if disk.total else 0.0
        issues, recommendations = [], []
        status = "healthy"
        if snap["error_rate"] > 10 or disk_pct > 95:
            status = "critical"
        elif snap["error_rate"] > 5 or snap["avg_response_ms"] > 1000 or disk_pct > 85:
            status = "warning"
        if snap["error_rate"] > 5:
            issues.append(f"High error rate: {snap['error_rate']}%")
            recommendations.append("Review recent crash reports")
        if snap["avg_response_ms"] > 1000:
            issues.append(f"Slow responses: {snap['avg_response_ms']} ms average")
            recommendations.append("Check slow endpoints and database indexes")
        if disk_pct > 85:
            issues.append(f"Disk usage at {disk_pct}%")
            recommendations.append("Prune old backups or uploads")
        return {
            "metrics": {
                "total_requests": snap["total_requests"],
                "avg_response_ms": snap["avg_response_ms"],
                "p95_response_ms": snap["p95_response_ms"],
                "max_response_ms": snap["max_response_ms"],
                "error_rate": snap["error_rate"],
                "uptime_seconds": snap["uptime_seconds"],
                "uptime": metrics.format_uptime(snap["uptime_seconds"]),
                "database_size": db_size,
                "disk_total": disk.total,
                "disk_used": disk.used,
                "disk_usage_percent": disk_pct,
            },
            "health": {"status": status, "issues": issues, "recommendations": recommendations},
            "history": snap["history"],
        }

    def dashboard_stats(self) -> dict:
        latest = self.backups.latest()
        unresolved = self.crashes.search(resolved=False, limit=1)[1]
        return {
            "total_users": self.users.count(),
            "total_students": self.users.count(role=models.Role.STUDENT),
            "total_professors": self.users.count(role=models.Role.PROFESSOR),
            "total_admins": self.users.count(role=models.Role.ADMIN),
            "active_users": self.users.count(active_since=models.utcnow() - timedelta(days=7)),
            "unread_messages": self.messages.unread_count(),
            "unresolved_crashes": unresolved,
            "last_backup": time_ago(latest.created_at) if latest else "Never",
            "system_health": self.performance()["health"]["status"],
        }

    def send_test_email(self, to: str) -> dict:
        result = mailer.send_email(to, "test", {})
        if not result["success"]:
            raise ValueError(f"Failed to send test email: {result['error']}")
        return {"success": True, "message": f"Test email sent to {to}", "message_id": result["message_id"]}

    def verify_email(self) -> dict:
        return mailer.verify_connection()
