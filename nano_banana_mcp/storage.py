"""Saving returned images to disk."""
from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .core import InlineImage
from .session import SessionState

logger = logging.getLogger(__name__)

IMAGES_DIRNAME = "generated_imgs"
HOME_IMAGES_DIRNAME = "nano-banana-images"
# Working directories that should not receive output files
PROTECTED_PREFIXES = ("/usr/", "/opt/", "/var/")

GENERATED = "generated"
EDITED = "edited"


def get_images_directory(
    *,
    platform: Optional[str] = None,
    cwd: Optional[Path] = None,
    home: Optional[Path] = None,
) -> Path:
    """Pick the output directory for the current platform."""
    platform = platform or sys.platform
    home = home or Path.home()

    if platform.startswith("win"):
        return home / "Documents" / HOME_IMAGES_DIRNAME

    cwd = cwd or Path.cwd()
    if str(cwd).startswith(PROTECTED_PREFIXES):
        return home / HOME_IMAGES_DIRNAME
    return cwd / IMAGES_DIRNAME


def build_image_filename(kind: str, now: Optional[datetime] = None) -> str:
    """``<kind>-<timestamp>-<random id>.png``; always .png whatever the encoding."""
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    timestamp = timestamp.replace(":", "-").replace(".", "-")
    return f"{kind}-{timestamp}-{uuid.uuid4().hex[:6]}.png"


def write_image_to_file(buffer: bytes, target_path: "Path | str") -> Path:
    """Write image bytes to a file, creating directories as needed."""
    if not isinstance(buffer, (bytes, bytearray)):
        raise TypeError("Expected bytes for image buffer.")
    path = Path(target_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(buffer)
    return path


class ImageWriter:
    """Writes returned images and records each one as the session's last image."""

    def __init__(self, session: SessionState, images_dir: Optional[Path] = None) -> None:
        self.session = session
        self._images_dir = Path(images_dir) if images_dir else None

    @property
    def images_dir(self) -> Path:
        return self._images_dir or get_images_directory()

    def ensure_directory(self) -> Path:
        directory = self.images_dir
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def save(self, image: InlineImage, kind: str) -> Path:
        """Decode and write ``image``; the session points at it as soon as it exists."""
        path = write_image_to_file(image.decode(), self.ensure_directory() / build_image_filename(kind))
        self.session.record(path)
        logger.info("Saved %s image to %s", kind, path)
        return path
