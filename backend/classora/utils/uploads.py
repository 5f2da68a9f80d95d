"""Upload validation and storage helpers.

Files are written under `settings.UPLOAD_DIR/<folder>/` with a random
prefix and served back at `/uploads/<folder>/<name>`.
"""

import io
import re
import uuid
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from ..config import settings

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}


def validate_upload_filename(filename: str) -> None:
    if not filename or len(filename) > 200:
        raise ValueError("invalid filename")
    if "/" in filename or "\\" in filename:
        raise ValueError("invalid filename path")


def extension_of(filename: str) -> str:
    return Path(filename).suffix.lower().lstrip(".")


def check_size(payload: bytes, max_bytes: int) -> None:
    if not payload:
        raise ValueError("file is empty")
    if len(payload) > max_bytes:
        limit = f"{max_bytes // (1024 * 1024)}MB" if max_bytes >= 1024 * 1024 else f"{max_bytes} bytes"
        raise ValueError(f"file too large; maximum is {limit}")


def read_upload(upload, max_bytes: int) -> bytes:
    """Read an `UploadFile` without pulling more than `max_bytes + 1` into memory."""
    payload = upload.file.read(max_bytes + 1)
    check_size(payload, max_bytes)
    return payload


def verify_image(payload: bytes) -> None:
    """Raise ValueError unless `payload` decodes as an image."""
    try:
        Image.open(io.BytesIO(payload)).verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValueError("file is not a valid image") from exc


def sniff_matches_extension(payload: bytes, ext: str) -> bool:
    """Cheap content check for types that carry a signature."""
    if ext == "pdf":
        return payload[:4] == b"%PDF"
    if ext == "docx":
        return payload[:2] == b"PK"
    if ext in IMAGE_EXTENSIONS:
        try:
            verify_image(payload)
        except ValueError:
            return False
    return True


def store_upload(payload: bytes, filename: str, folder: str) -> str:
    """Persist `payload` and return its public URL."""
    safe = _SAFE_NAME.sub("_", Path(filename).name) or "file"
    stored = f"{uuid.uuid4().hex[:12]}_{safe}"
    target_dir = settings.UPLOAD_DIR / folder
    target_dir.mkdir(parents=True, exist_ok=True)
    (target_dir / stored).write_bytes(payload)
    return f"/uploads/{folder}/{stored}"


def remove_upload(url: str) -> None:
    """Delete a stored file given its public URL; unknown URLs are ignored."""
    if not url or not url.startswith("/uploads/"):
        return
    relative = url[len("/uploads/"):]
    target = (settings.UPLOAD_DIR / relative).resolve()
    root = settings.UPLOAD_DIR.resolve()
    if root in target.parents and target.exists():
        target.unlink()
