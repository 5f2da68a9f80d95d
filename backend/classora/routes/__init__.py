"""HTTP routers, mounted under `/api` by `classora.main`."""

from . import (admin, assignments, attendance, auth, calendar_events, classes, contact, dashboard, enrollments,
               invitations, notes, notifications, practice, quizzes, search, settings, teachers)

ROUTERS = [
    auth.router,
    classes.router,
    invitations.router,
    enrollments.router,
    notes.router,
    assignments.router,
    quizzes.router,
    attendance.router,
    practice.router,
    notifications.router,
    dashboard.router,
    calendar_events.router,
    teachers.router,
    search.router,
    settings.router,
    contact.router,
    admin.router,
]
