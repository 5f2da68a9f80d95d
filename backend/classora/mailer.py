"""Transactional email: templates and SMTP delivery.

`send_email(to, template, data)` renders one of the templates below and
hands the message to `deliver_email`. Failures are logged and reported in
the returned dict; they never propagate to the caller, so a request that
triggers an email still succeeds when the relay is down.
"""

import logging
import mimetypes
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from .config import settings

logger = logging.getLogger("classora.mail")

Rendered = Tuple[str, str, str]
Attachment = Union[Path, Tuple[str, bytes]]


def _layout(title: str, body_html: str) -> str:
    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        f"<div style=\"background: #4f46e5; color: #fff; padding: 20px;\"><h2>{escape(title)}</h2></div>"
        f"<div style=\"padding: 20px;\">{body_html}</div>"
        "<p style=\"color: #888; font-size: 12px; padding: 0 20px;\">Classora.in</p>"
        "</div>"
    )


def _e(data: dict, key: str, default: str = "") -> str:
    return escape(str(data.get(key) if data.get(key) is not None else default))


def _link(url: str, label: str) -> str:
    return f"<p><a href=\"{escape(url)}\">{escape(label)}</a></p>"


def _contact_notification(d: dict) -> Rendered:
    subject = f"New contact message: {d.get('subject', '')}"
    html = _layout("New Contact Form Submission", (
        f"<p><b>Name:</b> {_e(d, 'name')}</p><p><b>Email:</b> {_e(d, 'email')}</p>"
        f"<p><b>Subject:</b> {_e(d, 'subject')}</p><p>{_e(d, 'message')}</p>"
    ))
    text = f"From {d.get('name')} <{d.get('email')}>\nSubject: {d.get('subject')}\n\n{d.get('message')}"
    return subject, html, text


def _contact_reply(d: dict) -> Rendered:
    subject = f"Re: {d.get('subject', 'Your message')}"
    html = _layout("Reply from Classora Support", (
        f"<p>Hi {_e(d, 'name')},</p><p>{_e(d, 'reply_message')}</p>"
        f"<p>Regards,<br>{_e(d, 'admin_name', 'Classora Support')}</p>"
        f"<hr><p style=\"color:#666\">Your original message:<br>{_e(d, 'original_message')}</p>"
    ))
    text = f"Hi {d.get('name')},\n\n{d.get('reply_message')}\n\n{d.get('admin_name') or 'Classora Support'}"
    return subject, html, text


def _assignment_submission(d: dict) -> Rendered:
    subject = f"New submission: {d.get('assignment_title', '')}"
    html = _layout("Assignment Submitted", (
        f"<p>{_e(d, 'student_name')} submitted <b>{_e(d, 'assignment_title')}</b> "
        f"in {_e(d, 'class_name')}.</p><p>Submitted at {_e(d, 'submitted_at')}</p>"
    ))
    text = f"{d.get('student_name')} submitted {d.get('assignment_title')} in {d.get('class_name')}."
    return subject, html, text


def _assignment_graded(d: dict) -> Rendered:
    subject = f"Assignment graded: {d.get('assignment_title', '')}"
    feedback = f"<p><b>Feedback:</b> {_e(d, 'feedback')}</p>" if d.get('feedback') else ""
    html = _layout("Your Assignment Was Graded", (
        f"<p>Hi {_e(d, 'student_name')},</p><p><b>{_e(d, 'assignment_title')}</b> "
        f"({_e(d, 'class_name')}) received a grade of <b>{_e(d, 'grade')}%</b>.</p>{feedback}"
    ))
    text = f"{d.get('assignment_title')} graded: {d.get('grade')}%"
    return subject, html, text


def _new_content(kind: str) -> Callable[[dict], Rendered]:
    def render(d: dict) -> Rendered:
        subject = f"New {kind} in {d.get('class_name', '')}: {d.get('title', '')}"
        due = f"<p><b>Due:</b> {_e(d, 'due_date')}</p>" if d.get('due_date') else ""
        html = _layout(f"New {kind.title()}", (
            f"<p>Hi {_e(d, 'student_name', 'there')},</p>"
            f"<p>{_e(d, 'professor_name')} published <b>{_e(d, 'title')}</b> in {_e(d, 'class_name')}.</p>"
            f"{due}{_link(settings.APP_URL + '/dashboard', 'Open Classora')}"
        ))
        text = f"New {kind} '{d.get('title')}' in {d.get('class_name')}."
        return subject, html, text
    return render


def _welcome(d: dict) -> Rendered:
    subject = "Welcome to Classora"
    html = _layout("Welcome!", (
        f"<p>Hi {_e(d, 'name')},</p><p>Your {_e(d, 'role', 'student').lower()} account is ready.</p>"
        f"{_link(settings.APP_URL + '/auth/login', 'Sign in')}"
    ))
    text = f"Hi {d.get('name')}, your Classora account is ready."
    return subject, html, text


def _password_reset(d: dict) -> Rendered:
    subject = "Reset your Classora password"
    html = _layout("Password Reset", (
        f"<p>Hi {_e(d, 'name')},</p><p>Use the link below to reset your password. "
        f"It expires in one hour.</p>{_link(d.get('reset_url', ''), 'Reset password')}"
    ))
    text = f"Reset your password: {d.get('reset_url')}"
    return subject, html, text


def _backup_notification(d: dict) -> Rendered:
    subject = f"Backup completed: {d.get('backup_name', '')}"
    html = _layout("Database Backup", (
        f"<p>Backup <b>{_e(d, 'backup_name')}</b> ({_e(d, 'size')} bytes) was created "
        f"by {_e(d, 'created_by', 'system')}.</p>"
    ))
    text = f"Backup {d.get('backup_name')} created ({d.get('size')} bytes)."
    return subject, html, text


def _class_invitation(d: dict) -> Rendered:
    subject = f"You're invited to join {d.get('class_name', '')}"
    html = _layout("Class Invitation", (
        f"<p>{_e(d, 'professor_name')} invited you to join <b>{_e(d, 'class_name')}</b> "
        f"({_e(d, 'class_code')}).</p>{_link(d.get('invite_url', ''), 'Accept invitation')}"
        "<p>This invitation expires in 7 days.</p>"
    ))
    text = f"Join {d.get('class_name')}: {d.get('invite_url')}"
    return subject, html, text


def _stat_rows(d: dict) -> str:
    labels = (
        ("Students", "total_students"),
        ("Classes", "total_classes"),
        ("Notes", "total_notes"),
        ("Quizzes", "total_quizzes"),
        ("Assignments", "total_assignments"),
        ("Average grade", "average_grade"),
        ("Completion rate (%)", "completion_rate"),
        ("Student engagement (%)", "student_engagement"),
        ("Quiz performance (%)", "quiz_performance"),
    )
    return "".join(f"<tr><td>{label}</td><td><b>{_e(d, key, 0)}</b></td></tr>" for label, key in labels)


def _analytics_report(d: dict) -> Rendered:
    subject = f"Analytics Report - {d.get('professor_name', '')} - {d.get('generated_on', '')}"
    html = _layout("Teaching Analytics", (
        f"<p>Hi {_e(d, 'professor_name')},</p>"
        "<p>Here is a summary of your classes. The full report is attached.</p>"
        f"<table>{_stat_rows(d)}</table>"
    ))
    text = (
        f"Analytics for {d.get('professor_name')}: {d.get('total_students', 0)} students in "
        f"{d.get('total_classes', 0)} classes, average grade {d.get('average_grade', 0)}."
    )
    return subject, html, text


def analytics_report_html(d: dict) -> str:
    """Standalone HTML document with the summary plus one section per class."""
    sections = []
    for c in d.get("class_analytics", []):
        attendees = "".join(
            f"<li>{_e(row['student'] or {}, 'name')}: {row['attendance_rate']}%</li>" for row in c["top_attendees"])
        performers = "".join(
            f"<li>{_e(row['student'] or {}, 'name')}: {row['average_score']}%</li>"
            for row in c["top_quiz_performers"])
        sections.append(
            f"<h3>{_e(c, 'code')} - {_e(c, 'class_name')}</h3>"
            f"<p>{_e(c, 'students')} students, {_e(c, 'total_sessions')} sessions, "
            f"average attendance {_e(c, 'average_attendance')}%, "
            f"average quiz score {_e(c, 'average_quiz_score')}%, {_e(c, 'submissions')} submissions.</p>"
            f"<h4>Top attendees</h4><ul>{attendees}</ul><h4>Top quiz performers</h4><ul>{performers}</ul>"
        )
    months = "".join(
        f"<tr><td>{_e(m, 'month')}</td><td>{_e(m, 'students')}</td><td>{_e(m, 'assignments')}</td>"
        f"<td>{_e(m, 'quizzes')}</td></tr>" for m in d.get("monthly_stats", []))
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>Analytics Report - {_e(d, 'professor_name')}</title></head><body>"
        f"<h1>Analytics Report</h1><p>{_e(d, 'professor_name')} - {_e(d, 'generated_on')}</p>"
        f"<table>{_stat_rows(d)}</table>"
        "<h2>Monthly activity</h2><table><tr><th>Month</th><th>Enrollments</th><th>Assignments</th>"
        f"<th>Quizzes</th></tr>{months}</table>"
        f"<h2>Classes</h2>{''.join(sections)}</body></html>"
    )


def _test(d: dict) -> Rendered:
    subject = "Classora test email"
    html = _layout("Test Email", "<p>Your email configuration is working.</p>")
    return subject, html, "Your email configuration is working."


TEMPLATES: Dict[str, Callable[[dict], Rendered]] = {
    "contact_notification": _contact_notification,
    "contact_reply": _contact_reply,
    "assignment_submission": _assignment_submission,
    "assignment_graded": _assignment_graded,
    "new_assignment": _new_content("assignment"),
    "new_quiz": _new_content("quiz"),
    "new_note": _new_content("note"),
    "welcome": _welcome,
    "password_reset": _password_reset,
    "backup_notification": _backup_notification,
    "class_invitation": _class_invitation,
    "analytics_report": _analytics_report,
    "test": _test,
}


def render(template: str, data: dict) -> Rendered:
    try:
        renderer = TEMPLATES[template]
    except KeyError:
        raise ValueError(f"unknown email template: {template}")
    return renderer(data)


def build_message(to: str, template: str, data: dict,
                  attachments: Optional[Iterable[Attachment]] = None) -> EmailMessage:
    """Attachments are file paths or in-memory `(filename, content)` pairs."""
    subject, html, text = render(template, data)
    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = settings.SMTP_FROM
    message["To"] = to
    message["Message-ID"] = make_msgid(domain="classora.in")
    message.set_content(text)
    message.add_alternative(html, subtype="html")
    for item in attachments or ():
        if isinstance(item, tuple):
            name, content = item
        else:
            name, content = Path(item).name, Path(item).read_bytes()
        ctype, _ = mimetypes.guess_type(name)
        maintype, subtype = (ctype or "application/octet-stream").split("/", 1)
        message.add_attachment(content, maintype=maintype, subtype=subtype, filename=name)
    return message


def _open_connection() -> smtplib.SMTP:
    if settings.SMTP_SECURE or settings.SMTP_PORT == 465:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
        server.starttls()
    if settings.SMTP_USER and settings.SMTP_PASSWORD:
        server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
    return server


def deliver_email(message: EmailMessage) -> None:
    """Send `message` through the configured SMTP relay."""
    server = None
    try:
        server = _open_connection()
        server.send_message(message)
    finally:
        if server is not None:
            server.quit()


def send_email(to: str, template: str, data: dict, attachments: Optional[Iterable[Attachment]] = None) -> dict:
    """Render and deliver a templated email.

    Returns `{"success": True, "message_id": ...}` or
    `{"success": False, "error": ...}`.
    """
    if not settings.smtp_configured:
        logger.info("email_skipped template=%s to=%s reason=smtp_not_configured", template, to)
        return {"success": False, "error": "SMTP is not configured"}
    try:
        message = build_message(to, template, data, attachments)
        deliver_email(message)
    except (smtplib.SMTPException, OSError, ValueError) as exc:
        logger.warning("email_failed template=%s to=%s error=%s", template, to, exc)
        return {"success": False, "error": str(exc)}
    logger.info("email_sent template=%s to=%s", template, to)
    return {"success": True, "message_id": message["Message-ID"]}


def send_bulk(recipients: Iterable[Tuple[str, dict]], template: str) -> dict:
    """Send one templated email per `(address, data)` pair."""
    sent = failed = 0
    for to, data in recipients:
        if send_email(to, template, data)["success"]:
            sent += 1
        else:
            failed += 1
    return {"sent": sent, "failed": failed}


def verify_connection() -> dict:
    """Open and close an SMTP connection to check the configuration."""
    if not settings.smtp_configured:
        return {"success": False, "error": "SMTP is not configured"}
    server = None
    try:
        server = _open_connection()
        server.noop()
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("email_verify_failed error=%s", exc)
        return {"success": False, "error": str(exc)}
    finally:
        if server is not None:
            try:
                server.quit()
            except smtplib.SMTPException:
                pass
    return {"success": True}
