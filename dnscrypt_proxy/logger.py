"""Log file writers with size-based rotation."""

from __future__ import annotations

import errno
import gzip
import logging
import os
import shutil
import stat
import sys
import threading
from datetime import datetime, timedelta, timezone
from typing import IO

log = logging.getLogger(__name__)

MEGABYTE = 1024 * 1024
DEFAULT_MAX_SIZE = 100
_TIME_FORMAT = "%Y-%m-%dT%H-%M-%S"
_COMPRESS_SUFFIX = ".gz"


class RotatingLogWriter:
    """Appends to a file, rotating it into timestamped, compressed backups.

    max_size is in megabytes (0 means 100), max_age in days and
    max_backups a count; 0 disables the latter two limits.
    """

    def __init__(
        self,
        filename: str | os.PathLike,
        max_size: float = 0,
        max_age: int = 0,
        max_backups: int = 0,
        compress: bool = True,
        local_time: bool = True,
    ) -> None:
        self.filename = os.fspath(filename)
        self.max_size = max_size
        self.max_age = max_age
        self.max_backups = max_backups
        self.compress = compress
        self.local_time = local_time
        self._file: IO[bytes] | None = None
        self._size = 0
        self._last_backup: datetime | None = None
        self._lock = threading.Lock()

    @property
    def max_bytes(self) -> int:
        size = self.max_size if self.max_size > 0 else DEFAULT_MAX_SIZE
        return int(size * MEGABYTE)

    def write(self, line: str | bytes) -> int:
        data = line.encode("utf-8") if isinstance(line, str) else bytes(line)
        with self._lock:
            if len(data) > self.max_bytes:
                raise ValueError(
                    f"write length {len(data)} exceeds maximum file size {self.max_bytes}"
                )
            if self._file is None:
                self._open_existing_or_new(len(data))
            if self._size + len(data) > self.max_bytes:
                self._rotate()
            assert self._file is not None
            self._file.write(data)
            self._file.flush()
            self._size += len(data)
            return len(data)

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def __enter__(self) -> RotatingLogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _now(self) -> datetime:
        if self.local_time:
            return datetime.now()
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def _open_existing_or_new(self, write_len: int) -> None:
        self._mill()
        try:
            size = os.stat(self.filename).st_size
        except FileNotFoundError:
            self._open_new()
            return
        if size + write_len >= self.max_bytes:
            self._rotate()
            return
        try:
            self._file = open(self.filename, "ab")
        except OSError:
            self._open_new()
            return
        self._size = size

    def _open_new(self) -> None:
        directory = os.path.dirname(self.filename)
        if directory:
            os.makedirs(directory, 0o755, exist_ok=True)
        mode = 0o600
        try:
            st = os.stat(self.filename)
        except FileNotFoundError:
            pass
        else:
            mode = stat.S_IMODE(st.st_mode)
            os.replace(self.filename, self._backup_name())
        fd = os.open(self.filename, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, mode)
        self._file = os.fdopen(fd, "wb")
        self._size = 0

    def _rotate(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
        self._open_new()
        self._mill()

    def _split_name(self) -> tuple[str, str, str]:
        directory = os.path.dirname(self.filename) or "."
        prefix, ext = os.path.splitext(os.path.basename(self.filename))
        return directory, prefix, ext

    def _backup_name(self) -> str:
        directory, prefix, ext = self._split_name()
        now = self._now()
        now = now.replace(microsecond=now.microsecond // 1000 * 1000)
        if self._last_backup is not None and now <= self._last_backup:
            now = self._last_backup + timedelta(milliseconds=1)
        while True:
            stamp = now.strftime(_TIME_FORMAT) + f".{now.microsecond // 1000:03d}"
            name = os.path.join(directory, f"{prefix}-{stamp}{ext}")
            if not os.path.exists(name) and not os.path.exists(name + _COMPRESS_SUFFIX):
                break
            now += timedelta(milliseconds=1)
        self._last_backup = now
        return name

    def _backups(self) -> list[tuple[datetime, str]]:
        directory, prefix, ext = self._split_name()
        try:
            names = os.listdir(directory)
        except OSError:
            return []
        found = []
        start = prefix + "-"
        for name in names:
            if not name.startswith(start):
                continue
            if name.endswith(ext + _COMPRESS_SUFFIX):
                suffix = ext + _COMPRESS_SUFFIX
            elif name.endswith(ext):
                suffix = ext
            else:
                continue
            stamp = name[len(start) : len(name) - len(suffix)]
            try:
                when = datetime.strptime(stamp[:-4], _TIME_FORMAT)
                millis = int(stamp[-3:])
            except ValueError:
                continue
            if stamp[-4:-3] != ".":
                continue
            when = when.replace(microsecond=millis * 1000)
            found.append((when, os.path.join(directory, name)))
        found.sort(reverse=True)
        return found

    def _mill(self) -> None:
        backups = self._backups()
        remaining = []
        cutoff = self._now() - timedelta(days=self.max_age) if self.max_age > 0 else None
        for index, (when, path) in enumerate(backups):
            too_many = self.max_backups > 0 and index >= self.max_backups
            too_old = cutoff is not None and when < cutoff
            if too_many or too_old:
                try:
                    os.remove(path)
                except OSError as exc:
                    log.error("Unable to remove old log file [%s]: [%s]", path, exc)
            else:
                remaining.append(path)
        if not self.compress:
            return
        for path in remaining:
            if path.endswith(_COMPRESS_SUFFIX):
                continue
            try:
                with open(path, "rb") as src, gzip.open(path + _COMPRESS_SUFFIX, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                os.remove(path)
            except OSError as exc:
                log.error("Unable to compress log file [%s]: [%s]", path, exc)


def open_log(file_name: str, max_size: float, max_age: int, max_backups: int):
    """Return a writer for a log destination: stdout, a special file or a rotating file."""
    if file_name == "/dev/stdout":
        return sys.stdout
    try:
        st = os.stat(file_name)
    except OSError:
        st = None
    if st is not None and not stat.S_ISREG(st.st_mode):
        if stat.S_ISDIR(st.st_mode):
            raise IsADirectoryError(errno.EISDIR, "is a directory", file_name)
        return open(file_name, "a", buffering=1, encoding="utf-8")
    try:
        with open(file_name, "a", encoding="utf-8"):
            pass
    except OSError as exc:
        log.error("Unable to create [%s]: [%s]", file_name, exc)
    return RotatingLogWriter(
        file_name,
        max_size=max_size,
        max_age=max_age,
        max_backups=max_backups,
        compress=True,
        local_time=True,
    )