"""SQLModel data models.

Each class maps to a table. Timestamps are stored as naive UTC datetimes
(see `utcnow`) so values read back from SQLite compare cleanly.
"""

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert aware datetimes to naive UTC; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Role:
    STUDENT = "STUDENT"
    PROFESSOR = "PROFESSOR"
    ADMIN = "ADMIN"


class UserStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class User(SQLModel, table=True):
    """A registered user.

    `role` is one of STUDENT, PROFESSOR or ADMIN. `status` gates login.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    name: str
    password_hash: str
    role: str = Field(default=Role.STUDENT, index=True)
    status: str = Field(default=UserStatus.ACTIVE)
    bio: Optional[str] = None
    avatar: Optional[str] = None
    reset_token: Optional[str] = Field(default=None, index=True)
    reset_token_expiry: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    teacher_profile: Optional["TeacherProfile"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"uselist": False, "cascade": "all, delete-orphan"}
    )
    student_profile: Optional["StudentProfile"] = Relationship(
        back_populates="user", sa_relationship_kwargs={"uselist": False, "cascade": "all, delete-orphan"}
    )


class TeacherProfile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, ondelete="CASCADE")
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
    user: Optional[User] = Relationship(back_populates="teacher_profile")


class StudentProfile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, ondelete="CASCADE")
    university: Optional[str] = None
    college: Optional[str] = None
    department: Optional[str] = None
    semester: Optional[str] = None
    class_name: Optional[str] = None
    registration_no: Optional[str] = None
    roll_no: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    user: Optional[User] = Relationship(back_populates="student_profile")


class Classroom(SQLModel, table=True):
    """A class owned by a professor. Exposed as "class" over the API."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    code: str = Field(index=True, unique=True)
    description: Optional[str] = None
    is_private: bool = False
    is_archived: bool = Field(default=False, index=True)
    archived_at: Optional[datetime] = None
    gradient_color: Optional[str] = None
    image_url: Optional[str] = None
    professor_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Enrollment(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("class_id", "student_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    enrolled_at: datetime = Field(default_factory=utcnow)


class InvitationStatus:
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"


class ClassInvitation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    email: str = Field(index=True)
    token: str = Field(index=True, unique=True)
    status: str = Field(default=InvitationStatus.PENDING)
    invited_by: int = Field(foreign_key="user.id", ondelete="CASCADE")
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class ContentStatus:
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"
    PRIVATE = "PRIVATE"


class Note(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    content: str
    status: str = Field(default=ContentStatus.DRAFT, index=True)
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    professor_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Assignment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    file_url: Optional[str] = None
    due_date: Optional[datetime] = None
    status: str = Field(default=ContentStatus.DRAFT, index=True)
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    professor_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    note_id: Optional[int] = Field(default=None, foreign_key="note.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AssignmentSubmission(SQLModel, table=True):
    """One submission per (assignment, student); resubmission overwrites.

    `comment` is the student's note; `feedback` is the grader's.
    """
    __table_args__ = (UniqueConstraint("assignment_id", "student_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    assignment_id: int = Field(foreign_key="assignment.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    file_url: str
    file_name: str
    file_size: int = 0
    comment: Optional[str] = None
    grade: Optional[float] = None
    feedback: Optional[str] = None
    graded_at: Optional[datetime] = None
    graded_by: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    submitted_at: datetime = Field(default_factory=utcnow)


class QuestionType:
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    MULTIPLE_SELECTION = "MULTIPLE_SELECTION"
    SHORT_ANSWER = "SHORT_ANSWER"


class Quiz(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    time_limit: int = 30
    max_attempts: int = 1
    status: str = Field(default=ContentStatus.DRAFT, index=True)
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    professor_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    questions: List["QuizQuestion"] = Relationship(
        back_populates="quiz",
        sa_relationship_kwargs={"order_by": "QuizQuestion.order", "cascade": "all, delete-orphan"},
    )


class QuizQuestion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True, ondelete="CASCADE")
    text: str
    type: str = QuestionType.MULTIPLE_CHOICE
    points: int = 1
    order: int = 1
    correct_answer: Optional[str] = None
    correct_answers: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    quiz: Optional[Quiz] = Relationship(back_populates="questions")
    options: List["QuizOption"] = Relationship(
        back_populates="question",
        sa_relationship_kwargs={"order_by": "QuizOption.order", "cascade": "all, delete-orphan"},
    )


class QuizOption(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="quizquestion.id", index=True, ondelete="CASCADE")
    text: str
    is_correct: bool = False
    order: int = 1
    question: Optional[QuizQuestion] = Relationship(back_populates="options")


class QuizAttempt(SQLModel, table=True):
    """A completed quiz attempt. `score` is the earned points."""
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    score: float = 0
    total_points: float = 0
    percentage: float = 0
    time_spent: int = 0
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    answers: List["QuizAnswer"] = Relationship(
        back_populates="attempt", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class QuizAnswer(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key="quizattempt.id", index=True, ondelete="CASCADE")
    question_id: int = Field(foreign_key="quizquestion.id", ondelete="CASCADE")
    selected_options: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    text_answer: Optional[str] = None
    is_correct: bool = False
    points_earned: float = 0
    attempt: Optional[QuizAttempt] = Relationship(back_populates="answers")


class ContentView(SQLModel, table=True):
    """Records that a student opened a note, assignment or quiz."""
    __table_args__ = (UniqueConstraint("student_id", "content_type", "content_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    content_type: str = Field(index=True)
    content_id: int = Field(index=True)
    viewed_at: datetime = Field(default_factory=utcnow)


class AttendanceStatus:
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class AttendanceSession(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    professor_id: int = Field(foreign_key="user.id", ondelete="CASCADE")
    date: datetime = Field(index=True)
    title: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    records: List["AttendanceRecord"] = Relationship(
        back_populates="session", sa_relationship_kwargs={"cascade": "all, delete-orphan"}
    )


class AttendanceRecord(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("session_id", "student_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="attendancesession.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    status: str
    notes: Optional[str] = None
    marked_by: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    marked_at: datetime = Field(default_factory=utcnow)
    session: Optional[AttendanceSession] = Relationship(back_populates="records")


class PracticeQuestion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    content: str
    type: str = QuestionType.MULTIPLE_CHOICE
    subject: Optional[str] = Field(default=None, index=True)
    difficulty: str = "MEDIUM"
    points: int = 10
    time_limit: Optional[int] = None
    class_id: Optional[int] = Field(default=None, foreign_key="classroom.id", index=True, ondelete="CASCADE")
    created_by: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow)
    options: List["PracticeOption"] = Relationship(
        back_populates="question",
        sa_relationship_kwargs={"order_by": "PracticeOption.order", "cascade": "all, delete-orphan"},
    )


class PracticeOption(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="practicequestion.id", index=True, ondelete="CASCADE")
    text: str
    is_correct: bool = False
    explanation: Optional[str] = None
    order: int = 1
    question: Optional[PracticeQuestion] = Relationship(back_populates="options")


class PracticeAttempt(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    question_id: int = Field(foreign_key="practicequestion.id", index=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    selected_answers: List[int] = Field(default_factory=list, sa_column=Column(JSON))
    is_correct: bool = False
    score: int = 0
    time_spent: int = 0
    started_at: datetime = Field(default_factory=utcnow)


class PracticeFile(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    file_url: str
    file_name: Optional[str] = None
    class_id: int = Field(foreign_key="classroom.id", index=True, ondelete="CASCADE")
    uploaded_by: int = Field(foreign_key="user.id", ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow)


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    title: str
    message: str
    type: str = "general"
    link: Optional[str] = None
    is_read: bool = Field(default=False, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class UserSettings(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, ondelete="CASCADE")
    notifications: dict = Field(default_factory=dict, sa_column=Column(JSON))
    privacy: dict = Field(default_factory=dict, sa_column=Column(JSON))
    appearance: dict = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utcnow)


class SystemSettings(SQLModel, table=True):
    """Singleton row holding site-wide configuration."""
    id: Optional[int] = Field(default=None, primary_key=True)
    site_name: str = "Classora.in"
    site_description: str = "Modern classroom management platform"
    maintenance_mode: bool = False
    registration_enabled: bool = True
    email_notifications: bool = True
    max_file_size: int = 10
    allowed_file_types: List[str] = Field(
        default_factory=lambda: ["pdf", "doc", "docx", "txt", "jpg", "jpeg", "png", "gif"],
        sa_column=Column(JSON),
    )
    session_timeout: int = 24
    backup_retention: int = 30
    auto_backup: bool = False
    backup_frequency: str = "daily"
    backup_time: str = "02:00"
    email_host: Optional[str] = None
    email_port: int = 587
    email_secure: bool = False
    email_from: str = "noreply@classora.in"
    email_from_name: str = "Classora"
    company_name: str = "Classora"
    company_email: str = "support@classora.in"
    company_phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    website: str = "https://classora.in"
    updated_at: datetime = Field(default_factory=utcnow)


class ContactMessage(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str
    subject: str
    message: str
    read: bool = Field(default=False, index=True)
    reply_message: Optional[str] = None
    replied_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Backup(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = "manual"
    status: str = "completed"
    size: int = 0
    path: str
    description: Optional[str] = None
    created_by: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow)


class CrashReport(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = "error"
    severity: str = "high"
    message: str
    stack_trace: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None
    user_id: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    resolved: bool = Field(default=False, index=True)
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class CalendarEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    type: str = "academic"
    date: datetime = Field(index=True)
    category: Optional[str] = None
    priority: Optional[str] = None
    class_id: Optional[int] = Field(default=None, foreign_key="classroom.id", ondelete="CASCADE")
    professor_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow)
