import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


def cleanup_file(file_path: str) -> None:
    if not file_path:
        return
    try:
        path = Path(file_path)
        if path.exists():
            path.unlink(missing_ok=True)
        parent = path.parent
        if parent.exists() and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
    except OSError as e:
        logger.warning(f"Could not clean up {file_path}: {e}")


@contextmanager
def audio_workspace(prefix: str = "voice-note-") -> Iterator[Path]:
    """Temporary directory for audio being processed.

    Removed on every exit path, including errors raised by the caller.
    """
    workdir = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield workdir
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
        logger.debug(f"Released audio workspace {workdir}")


def safe_filename(name: str) -> str:
    return os.path.basename(name or "").replace(" ", "_") or "audio.webm"
