"""Persistence for the last-seen version marker."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)


class StateStore:
    """Persists the last-seen version identifier as raw text in one file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def read(self) -> str:
        """Return the stored identifier, or ``""`` if absent or unreadable."""
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("state_read_failed", path=str(self.path), error=str(e))
            return ""

    def write(self, value: str) -> None:
        """Replace the stored identifier.

        The value goes to a temporary file in the same directory, which is
        then renamed over the target, so readers never see a partial write.

        Raises:
            OSError: If the directory cannot be written.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
