"""Per-process memory of the most recently produced image."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional


class SessionState:
    """Holds the path of the last generated or edited image.

    The reference is overwritten by every saved image and never cleared; a file
    that has since been removed is only noticed when the path is used.
    """

    __slots__ = ("_last_image_path",)

    def __init__(self) -> None:
        self._last_image_path: Optional[Path] = None

    @property
    def last_image_path(self) -> Optional[Path]:
        return self._last_image_path

    def record(self, path: "Path | str") -> None:
        """Remember ``path`` as the latest image."""
        self._last_image_path = Path(path)

    def has_image(self) -> bool:
        return self._last_image_path is not None

    def image_exists(self) -> bool:
        """Whether the remembered file is still on disk."""
        return self._last_image_path is not None and self._last_image_path.is_file()

    def stat(self) -> Optional[os.stat_result]:
        """``os.stat`` of the remembered file, or None if it is gone."""
        if self._last_image_path is None:
            return None
        try:
            return self._last_image_path.stat()
        except OSError:
            return None
