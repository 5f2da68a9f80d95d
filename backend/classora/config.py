"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    TRUST_USER_ID_HEADER: bool
    APP_URL: str
    UPLOAD_DIR: Path
    BACKUP_DIR: Path
    MAX_UPLOAD_BYTES: int
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USER: str
    SMTP_PASSWORD: str
    SMTP_FROM: str
    SMTP_SECURE: bool
    SUPPORT_EMAIL: str
    LOGIN_RATE_LIMIT_PER_MIN: int
    CONTACT_RATE_LIMIT_PER_MIN: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'classora.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        default_trust = "true" if self.ENV == "dev" else "false"
        self.TRUST_USER_ID_HEADER = os.getenv("TRUST_USER_ID_HEADER", default_trust).lower() == "true"
        self.APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
        self.UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE / "uploads"))).expanduser()
        self.BACKUP_DIR = Path(os.getenv("BACKUP_DIR", str(BASE / "backups"))).expanduser()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))  # 50 MB default
        self.SMTP_HOST = os.getenv("SMTP_HOST", "")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USER = os.getenv("SMTP_USER", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.SMTP_FROM = os.getenv("SMTP_FROM", "Classora <noreply@classora.in>")
        self.SMTP_SECURE = os.getenv("SMTP_SECURE", "false").lower() == "true"
        self.SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@classora.in")
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "10"))
        self.CONTACT_RATE_LIMIT_PER_MIN = int(os.getenv("CONTACT_RATE_LIMIT_PER_MIN", "5"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.ENV == "prod" and self.TRUST_USER_ID_HEADER:
            raise RuntimeError("TRUST_USER_ID_HEADER must not be enabled in production")

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_HOST)


settings = Settings()
