"""Tracking and guaranteed release of transient files created during a run."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def unique_filename(stem: str, suffix: str) -> str:
    """Collision-free file name: ``<stem>_<millis>_<random>.<ext>``."""

    if suffix and not suffix.startswith("."):
        suffix = f".{suffix}"
    return f"{stem}_{int(time.time() * 1000)}_{secrets.token_hex(6)}{suffix}"


class TempResourceManager:
    """Owns every filesystem handle created for one pipeline run.

    Paths are registered when they are handed out (or adopted) and each one is
    removed exactly once, either explicitly through :meth:`release` or by the
    final :meth:`cleanup` pass. Provider SDK calls run in worker threads, so
    bookkeeping is guarded by a lock.
    """

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._tracked: dict[Path, bool] = {}  # path -> released

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def tracked(self) -> list[Path]:
        """Paths registered and not yet released."""

        with self._lock:
            return [path for path, released in self._tracked.items() if not released]

    def new_path(self, stem: str, suffix: str) -> Path:
        path = self._base_dir / unique_filename(stem, suffix)
        return self.adopt(path)

    def adopt(self, path: Path | str) -> Path:
        """Take ownership of a file created elsewhere (e.g. an upload)."""

        path = Path(path)
        with self._lock:
            self._tracked.setdefault(path, False)
        return path

    def write_bytes(self, data: bytes, stem: str, suffix: str) -> Path:
        path = self.new_path(stem, suffix)
        try:
            path.write_bytes(data)
        except OSError:
            self.release(path)
            raise
        return path

    def release(self, path: Path | str) -> bool:
        """Delete ``path`` if it is tracked and not released yet.

        Returns True when this call performed the release.
        """

        path = Path(path)
        with self._lock:
            if self._tracked.get(path, True):
                return False
            self._tracked[path] = True

        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.error("Failed to remove temporary file %s: %s", path, exc)
        return True

    @contextmanager
    def scoped(self, stem: str, suffix: str) -> Iterator[Path]:
        """Yield a fresh temp path that is removed when the block exits."""

        path = self.new_path(stem, suffix)
        try:
            yield path
        finally:
            self.release(path)

    def cleanup(self) -> int:
        """Release every path still tracked. Safe to call repeatedly."""

        released = sum(1 for path in self.tracked if self.release(path))
        if released:
            LOGGER.debug("Released %d temporary file(s) in %s", released, self._base_dir)
        return released

    def __enter__(self) -> TempResourceManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cleanup()
