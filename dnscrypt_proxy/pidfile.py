"""Writing and removing the PID file."""

from __future__ import annotations

import os
import tempfile


def pid_file_create(path: str | os.PathLike | None) -> None:
    """Atomically write the current process id to path, if one is set."""
    if not path:
        return
    path = os.fspath(path)
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, 0o755, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".pid-", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(str(os.getpid()))
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_name, 0o644)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.remove(tmp_name)
        except OSError:
            pass
        raise


def pid_file_remove(path: str | os.PathLike | None) -> None:
    """Remove the PID file, if one is set."""
    if not path:
        return
    os.remove(path)