import hashlib
import uuid
from pathlib import Path
from typing import Optional

from ember.config import settings
from ember.errors import CaptureValidationError
from ember.logging import logger

# Magic numbers of the screenshot formats we accept
IMAGE_SIGNATURES = {
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/gif": (b"GIF87a", b"GIF89a"),
    "image/webp": (b"RIFF",),
}

EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def compute_sha256(data: bytes) -> str:
    """Compute SHA256 hash of bytes."""
    return hashlib.sha256(data).hexdigest()


def validate_image(data: bytes, mime_type: str) -> str:
    """Check size, declared type and magic bytes. Returns the normalized MIME type."""
    mime = mime_type.lower().strip()
    if mime == "image/jpg":
        mime = "image/jpeg"
    if mime not in IMAGE_SIGNATURES:
        raise CaptureValidationError(f"Unsupported screenshot type: {mime_type}")
    if not data:
        raise CaptureValidationError("Screenshot is empty")
    if len(data) > settings.MAX_SCREENSHOT_BYTES:
        raise CaptureValidationError(
            f"Screenshot exceeds {settings.MAX_SCREENSHOT_BYTES} bytes ({len(data)})"
        )
    if not data.startswith(IMAGE_SIGNATURES[mime]) or (mime == "image/webp" and data[8:12] != b"WEBP"):
        raise CaptureValidationError(f"Screenshot content does not match {mime}")
    return mime


def save_screenshot(profile_id: uuid.UUID, data: bytes, mime_type: str, data_dir: Optional[Path] = None) -> str:
    """
    Validate and store one screenshot.

    Args:
        profile_id: Owning profile; screenshots are stored per profile.
        data: Raw image bytes.
        mime_type: Declared MIME type of the upload.
        data_dir: Storage root, defaults to settings.DATA_DIR.

    Returns:
        A file:// URL the extraction adapter can read back.
    """
    mime = validate_image(data, mime_type)
    sha256 = compute_sha256(data)

    profile_dir = (data_dir or settings.DATA_DIR) / "screenshots" / str(profile_id)
    profile_dir.mkdir(parents=True, exist_ok=True)

    # Content-addressed, so re-uploading the same screenshot is idempotent
    stored_path = profile_dir / f"{sha256}{EXTENSIONS[mime]}"
    if not stored_path.exists():
        stored_path.write_bytes(data)
        logger.info(f"Stored screenshot {stored_path.name} ({len(data)} bytes)")

    return stored_path.resolve().as_uri()
