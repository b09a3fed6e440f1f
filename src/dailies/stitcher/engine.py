from __future__ import annotations

import logging
import shutil
import tempfile
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import ffmpeg
from imageio_ffmpeg import get_ffmpeg_exe

from dailies.errors import AssemblyError

logger = logging.getLogger(__name__)


class TranscodingEngine:
    """ffmpeg wrapper that hands out a private scratch directory per run."""

    def __init__(self, root: Optional[Path] = None, binary: Optional[str] = None) -> None:
        self._binary = binary
        self._root = Path(root) if root else None
        self._namespace: Optional[Path] = None
        self._closed = False

    @property
    def binary(self) -> str:
        if self._binary is None:
            self._binary = get_ffmpeg_exe()
            logger.debug("Using ffmpeg binary at %s", self._binary)
        return self._binary

    @property
    def namespace(self) -> Path:
        if self._closed:
            raise RuntimeError("Transcoding engine has been closed")
        if self._namespace is None:
            if self._root is not None:
                self._root.mkdir(parents=True, exist_ok=True)
            self._namespace = Path(tempfile.mkdtemp(prefix="dailies-engine-", dir=self._root))
        return self._namespace

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def session(self) -> Iterator[Path]:
        """Yield a run-unique working directory, removed on exit whatever happens."""
        workdir = self.namespace / f"run-{uuid.uuid4().hex}"
        workdir.mkdir()
        try:
            yield workdir
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def run(self, stream) -> None:
        try:
            stream.overwrite_output().run(cmd=self.binary, capture_stdout=True, capture_stderr=True)
        except ffmpeg.Error as exc:
            diagnostics = (exc.stderr or b"").decode("utf-8", errors="ignore")
            logger.error("ffmpeg failed: %s", diagnostics.strip()[-500:])
            raise AssemblyError("Transcoding engine failed", diagnostics) from exc

    def close(self) -> None:
        if self._namespace is not None:
            shutil.rmtree(self._namespace, ignore_errors=True)
            self._namespace = None
        self._closed = True


_lock = threading.Lock()
_shared: Optional[TranscodingEngine] = None
_refcount = 0


@contextmanager
def shared_engine(root: Optional[Path] = None) -> Iterator[TranscodingEngine]:
    """Borrow the process-wide engine; it is created on first use and closed with its last user."""
    global _shared, _refcount
    with _lock:
        if _shared is None:
            _shared = TranscodingEngine(root)
        engine = _shared
        _refcount += 1
    try:
        yield engine
    finally:
        with _lock:
            _refcount -= 1
            if _refcount == 0 and _shared is engine:
                engine.close()
                _shared = None


def active_references() -> int:
    return _refcount
