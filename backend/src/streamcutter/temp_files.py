"""
Temp namespace: collision-free paths for uploads and cut outputs.

Every reserved path embeds a fresh random token, so concurrent cuts never
share a file even when the uploads have the same name. Deletion is
idempotent, which lets the janitor and a cut's own cleanup race harmlessly.
"""
from __future__ import annotations

import logging
import re
import time
import uuid
from datetime import datetime
from pathlib import Path, PurePath
from threading import Lock
from typing import Callable, Optional, Union

from streamcutter.models import TempFile, TempFilePurpose

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_UNSAFE_NAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')
_TIMESTAMP_FORMAT = "%Y%m%d%H%M"
_MAX_STEM_LENGTH = 80


def split_file_name(file_name: str) -> tuple[str, str]:
    """Return a filesystem-safe (stem, extension) for an uploaded file name."""
    name = (file_name or "").replace("\\", "/").rsplit("/", 1)[-1]
    pure = PurePath(name)
    extension = pure.suffix.lower()
    if extension and not re.fullmatch(r"\.[a-z0-9]{1,10}", extension):
        extension = ""
    stem = _UNSAFE_NAME_CHARS.sub("_", pure.stem if extension else name).strip(" ._")
    return (stem[:_MAX_STEM_LENGTH] or "media"), extension


class TempNamespace:
    """Manages the temp directory shared by cuts and the janitor."""

    def __init__(
        self,
        temp_dir: PathLike,
        *,
        clock: Callable[[], float] = time.time,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.temp_dir = Path(temp_dir)
        self._clock = clock
        self._now = now
        self._ready = False
        self._lock = Lock()
        self._active: set[Path] = set()

    def ensure_directory(self) -> Path:
        """Create the temp directory on first use."""
        if not self._ready:
            if not self.temp_dir.exists():
                logger.info("temp.dir.create path=%s", self.temp_dir)
            self.temp_dir.mkdir(parents=True, exist_ok=True)
            self._ready = True
        return self.temp_dir

    def _new_token(self) -> str:
        return uuid.uuid4().hex

    def _candidate(self, purpose: TempFilePurpose, token: str, stem: str, extension: str) -> tuple[Path, Optional[str]]:
        if purpose is TempFilePurpose.INPUT:
            return self.temp_dir / f"{token}{extension}", None
        display_name = f"{stem}_{self._now().strftime(_TIMESTAMP_FORMAT)}{extension}"
        return self.temp_dir / f"{token}_{display_name}", display_name

    def reserve(self, purpose: TempFilePurpose, original_file_name: str) -> TempFile:
        """
        Reserve a path that does not currently exist.

        Inputs are named `<token><ext>`. Outputs keep a readable download name
        `<stem>_<timestamp><ext>` while the on-disk name is prefixed with the
        token.
        """
        self.ensure_directory()
        stem, extension = split_file_name(original_file_name)
        with self._lock:
            while True:
                path, display_name = self._candidate(purpose, self._new_token(), stem, extension)
                if path not in self._active and not path.exists():
                    break
            self._active.add(path)
        logger.debug("temp.reserve purpose=%s path=%s", purpose.value, path)
        return TempFile(path=path, purpose=purpose, display_name=display_name)

    def release(self, path: PathLike) -> None:
        """Stop tracking a path, e.g. once it is handed off to the caller."""
        with self._lock:
            self._active.discard(Path(path))

    def is_active(self, path: PathLike) -> bool:
        with self._lock:
            return Path(path) in self._active

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def delete(self, path: PathLike) -> bool:
        """Delete a file; an already-missing file is not an error."""
        target = Path(path)
        self.release(target)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        logger.debug("temp.delete path=%s", target)
        return True

    def list_with_ages(self) -> list[tuple[Path, float]]:
        """Return (path, age in seconds) for every regular file in the namespace."""
        if not self.temp_dir.is_dir():
            return []
        now = self._clock()
        entries: list[tuple[Path, float]] = []
        for path in self.temp_dir.iterdir():
            try:
                stat = path.stat()
            except FileNotFoundError:
                # Removed by a cut between listing and stat.
                continue
            if not path.is_file():
                continue
            entries.append((path, max(0.0, now - stat.st_mtime)))
        return entries
