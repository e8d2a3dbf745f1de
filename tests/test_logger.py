import gzip
import sys

import pytest

from dnscrypt_proxy.logger import MEGABYTE, RotatingLogWriter, open_log


def test_write_appends_lines(tmp_path):
    path = tmp_path / "query.log"
    with RotatingLogWriter(path, max_size=1) as writer:
        assert writer.write("first\n") == len("first\n")
        writer.write(b"second\n")
    assert path.read_text() == "first\nsecond\n"


def test_write_appends_to_existing_file(tmp_path):
    path = tmp_path / "query.log"
    path.write_text("old\n")
    with RotatingLogWriter(path, max_size=1) as writer:
        writer.write("new\n")
    assert path.read_text() == "old\nnew\n"


def test_write_larger_than_limit_raises(tmp_path):
    writer = RotatingLogWriter(tmp_path / "query.log", max_size=10 / MEGABYTE)
    with pytest.raises(ValueError):
        writer.write("x" * 11)


def test_rotation_keeps_limited_compressed_backups(tmp_path):
    path = tmp_path / "queries.log"
    line = "x" * 39 + "\n"
    writer = RotatingLogWriter(path, max_size=100 / MEGABYTE, max_backups=2)
    for _ in range(10):
        writer.write(line)
    writer.close()
    assert path.stat().st_size <= 100
    backups = sorted(p for p in tmp_path.iterdir() if p != path)
    assert len(backups) == 2
    for backup in backups:
        assert backup.name.startswith("queries-")
        assert backup.name.endswith(".log.gz")
        assert gzip.decompress(backup.read_bytes()) == (line * 2).encode()


def test_rotation_without_compression(tmp_path):
    path = tmp_path / "nx.log"
    writer = RotatingLogWriter(path, max_size=50 / MEGABYTE, compress=False)
    writer.write("a" * 40)
    writer.write("b" * 40)
    writer.close()
    backups = [p for p in tmp_path.iterdir() if p != path]
    assert [b.read_text() for b in backups] == ["a" * 40]
    assert path.read_text() == "b" * 40


def test_open_log_stdout():
    assert open_log("/dev/stdout", 10, 7, 1) is sys.stdout


def test_open_log_directory_raises(tmp_path):
    with pytest.raises(IsADirectoryError):
        open_log(str(tmp_path), 10, 7, 1)


def test_open_log_regular_file(tmp_path):
    path = tmp_path / "blocked.log"
    writer = open_log(str(path), 10, 7, 1)
    assert path.exists()
    writer.write("line\n")
    writer.close()
    assert path.read_text() == "line\n"