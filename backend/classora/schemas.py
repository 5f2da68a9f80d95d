"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and carry the validation bounds
(lengths, ranges, allowed values) so controllers stay thin.
"""

from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

ContentStatusIn = Literal["DRAFT", "PUBLISHED", "CLOSED"]
NoteStatusIn = Literal["DRAFT", "PUBLISHED", "PRIVATE"]
QuestionTypeIn = Literal["MULTIPLE_CHOICE", "TRUE_FALSE", "MULTIPLE_SELECTION", "SHORT_ANSWER"]
AttendanceStatusIn = Literal["PRESENT", "ABSENT", "LATE", "EXCUSED"]


# --- auth -----------------------------------------------------------------

class RegisterIn(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)
    name: str = Field(min_length=2)
    role: Literal["STUDENT", "PROFESSOR"] = "STUDENT"

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginIn(BaseModel):
    email: str
    password: str


class ForgotPasswordIn(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)


class ResetPasswordIn(BaseModel):
    token: str = Field(min_length=1)
    password: str = Field(min_length=8)


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class TeacherProfileIn(BaseModel):
    university: Optional[str] = None
    college: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    website: Optional[str] = None
    linkedin: Optional[str] = None
    research_interests: Optional[str] = None
    qualifications: Optional[str] = None
    experience: Optional[str] = None


class StudentProfileIn(BaseModel):
    university: Optional[str] = None
    college: Optional[str] = None
    department: Optional[str] = None
    semester: Optional[str] = None
    class_name: Optional[str] = None
    registration_no: Optional[str] = None
    roll_no: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    bio: Optional[str] = None
    teacher_profile: Optional[TeacherProfileIn] = None
    student_profile: Optional[StudentProfileIn] = None


# --- classes --------------------------------------------------------------

class ClassCreateIn(BaseModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    description: Optional[str] = None
    is_private: bool = False
    gradient_color: Optional[str] = None
    image_url: Optional[str] = None


class ClassUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    code: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_private: Optional[bool] = None
    gradient_color: Optional[str] = None
    image_url: Optional[str] = None


class ArchiveIn(BaseModel):
    is_archived: bool


class InviteExistingIn(BaseModel):
    student_ids: List[int] = Field(min_length=1)


class InviteEmailsIn(BaseModel):
    emails: List[str] = Field(min_length=1)


class AcceptInvitationIn(BaseModel):
    token: str = Field(min_length=1)


class EnrollIn(BaseModel):
    class_id: int


# --- notes / assignments --------------------------------------------------

class NoteCreateIn(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    class_id: int
    status: NoteStatusIn = "DRAFT"


class NoteUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)
    status: Optional[NoteStatusIn] = None


class AssignmentCreateIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    class_id: int
    note_id: Optional[int] = None
    due_date: Optional[datetime] = None
    status: ContentStatusIn = "DRAFT"
    file_url: Optional[str] = None
    category: Optional[str] = None


class AssignmentUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    note_id: Optional[int] = None
    due_date: Optional[datetime] = None
    status: Optional[ContentStatusIn] = None
    file_url: Optional[str] = None
    category: Optional[str] = None


class GradeIn(BaseModel):
    grade: float = Field(ge=0)
    feedback: Optional[str] = None


# --- quizzes --------------------------------------------------------------

class QuizQuestionIn(BaseModel):
    text: str = Field(min_length=1)
    type: QuestionTypeIn = "MULTIPLE_CHOICE"
    options: List[str] = Field(default_factory=list)
    correct_answer: Optional[str] = None
    correct_answers: List[str] = Field(default_factory=list)
    points: int = Field(default=1, ge=1, le=10)


class QuizCreateIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    class_id: int
    time_limit: int = Field(default=30, ge=1, le=180)
    max_attempts: int = Field(default=1, ge=1, le=10)
    status: ContentStatusIn = "DRAFT"
    questions: List[QuizQuestionIn] = Field(min_length=1)


class QuizUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    time_limit: Optional[int] = Field(default=None, ge=1, le=180)
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)
    status: Optional[ContentStatusIn] = None
    questions: Optional[List[QuizQuestionIn]] = Field(default=None, min_length=1)


class QuizAnswerIn(BaseModel):
    question_id: int
    selected_options: List[str] = Field(default_factory=list)
    text_answer: Optional[str] = None


class QuizSubmissionIn(BaseModel):
    quiz_id: int
    start_time: Optional[datetime] = None
    answers: List[QuizAnswerIn] = Field(default_factory=list)


# --- attendance -----------------------------------------------------------

class AttendanceSessionIn(BaseModel):
    class_id: int
    date: datetime
    title: Optional[str] = None
    description: Optional[str] = None


class AttendanceMarkIn(BaseModel):
    session_id: int
    student_id: int
    status: AttendanceStatusIn
    notes: Optional[str] = None


class AttendanceRecordIn(BaseModel):
    student_id: int
    status: AttendanceStatusIn
    notes: Optional[str] = None


class AttendanceBatchIn(BaseModel):
    session_id: int
    records: List[AttendanceRecordIn] = Field(min_length=1)


# --- practice -------------------------------------------------------------

class PracticeOptionIn(BaseModel):
    text: str = Field(min_length=1)
    is_correct: bool = False
    explanation: Optional[str] = None


class PracticeQuestionIn(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    type: QuestionTypeIn = "MULTIPLE_CHOICE"
    subject: Optional[str] = None
    difficulty: Literal["EASY", "MEDIUM", "HARD"] = "MEDIUM"
    points: int = Field(default=10, ge=1, le=100)
    time_limit: Optional[int] = Field(default=None, ge=1, le=60)
    class_id: Optional[int] = None
    options: List[PracticeOptionIn] = Field(default_factory=list)


class PracticeQuestionUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)
    subject: Optional[str] = None
    difficulty: Optional[Literal["EASY", "MEDIUM", "HARD"]] = None
    points: Optional[int] = Field(default=None, ge=1, le=100)
    time_limit: Optional[int] = Field(default=None, ge=1, le=60)
    options: Optional[List[PracticeOptionIn]] = None


class PracticeAttemptIn(BaseModel):
    question_id: int
    selected_answers: List[int] = Field(min_length=1)
    time_spent: int = Field(default=0, ge=0)


# --- notifications / calendar ---------------------------------------------

NotificationTypeIn = Literal[
    "assignment", "quiz", "announcement", "general", "system", "assignment_graded", "new_note"
]


class NotificationCreateIn(BaseModel):
    user_id: Optional[int] = None
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: NotificationTypeIn = "general"
    link: Optional[str] = None


class NotificationMarkIn(BaseModel):
    notification_ids: List[int] = Field(default_factory=list)
    mark_all_as_read: bool = False


class CalendarEventIn(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    type: Literal["holiday", "academic", "todo"]
    date: datetime
    class_id: Optional[int] = None
    category: Optional[str] = None
    priority: Optional[Literal["low", "medium", "high"]] = None


# --- settings / contact / admin -------------------------------------------

class NotificationPrefsIn(BaseModel):
    email: Optional[bool] = None
    push: Optional[bool] = None
    assignments: Optional[bool] = None
    quizzes: Optional[bool] = None
    announcements: Optional[bool] = None


class PrivacyPrefsIn(BaseModel):
    profile_visibility: Optional[Literal["public", "private", "classmates"]] = None
    show_email: Optional[bool] = None
    show_phone: Optional[bool] = None


class AppearancePrefsIn(BaseModel):
    theme: Optional[Literal["light", "dark", "auto"]] = None
    font_size: Optional[Literal["small", "medium", "large"]] = None


class UserSettingsIn(BaseModel):
    notifications: Optional[NotificationPrefsIn] = None
    privacy: Optional[PrivacyPrefsIn] = None
    appearance: Optional[AppearancePrefsIn] = None


class SystemSettingsIn(BaseModel):
    site_name: Optional[str] = Field(default=None, min_length=1)
    site_description: Optional[str] = None
    maintenance_mode: Optional[bool] = None
    registration_enabled: Optional[bool] = None
    email_notifications: Optional[bool] = None
    max_file_size: Optional[int] = Field(default=None, ge=1, le=100)
    allowed_file_types: Optional[Union[List[str], str]] = None
    session_timeout: Optional[int] = Field(default=None, ge=1, le=168)
    backup_retention: Optional[int] = Field(default=None, ge=1, le=365)
    email_host: Optional[str] = None
    email_port: Optional[int] = Field(default=None, ge=1, le=65535)
    email_secure: Optional[bool] = None
    email_from: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    email_from_name: Optional[str] = None
    company_name: Optional[str] = None
    company_email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    company_phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None

    @field_validator("allowed_file_types")
    @classmethod
    def _split_types(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        if v is None:
            return v
        return [t.strip().lower().lstrip(".") for t in v if t and t.strip()]


class BackupSettingsIn(BaseModel):
    auto_backup: Optional[bool] = None
    backup_frequency: Optional[Literal["hourly", "daily", "weekly", "monthly"]] = None
    backup_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    backup_retention: Optional[int] = Field(default=None, ge=1, le=365)


class BackupCreateIn(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class ContactIn(BaseModel):
    name: str = Field(min_length=2)
    email: str = Field(pattern=EMAIL_PATTERN)
    subject: str = Field(min_length=2)
    message: str = Field(min_length=10)


class ContactReplyIn(BaseModel):
    reply_message: str = Field(min_length=1)
    admin_name: Optional[str] = None


class UserStatusIn(BaseModel):
    status: Literal["active", "inactive", "suspended"]


class AdminUserUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    role: Optional[Literal["STUDENT", "PROFESSOR", "ADMIN"]] = None
    bio: Optional[str] = None


class CrashUpdateIn(BaseModel):
    resolved: bool


class EmailTestIn(BaseModel):
    to: str = Field(pattern=EMAIL_PATTERN)


class AnalyticsEmailIn(BaseModel):
    """Recipient defaults to the requesting professor's own address."""
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN)
    professor_name: Optional[str] = Field(default=None, max_length=100)
