import logging
import os
import time

from infra.log_config import cleanup_old_logs, get_audit_logger


def test_audit_logger_writes_dated_file(tmp_path):
    logger = get_audit_logger("test-writes", tmp_path)
    logger.info("file=a.csv events=3")
    for handler in logger.handlers:
        handler.flush()

    files = list(tmp_path.glob("audit_*.log"))
    assert len(files) == 1
    assert "file=a.csv events=3" in files[0].read_text(encoding="utf-8")
    assert logger.propagate is False


def test_audit_logger_is_not_duplicated(tmp_path):
    first = get_audit_logger("test-dedupe", tmp_path)
    second = get_audit_logger("test-dedupe", tmp_path)
    assert first is second
    assert len(second.handlers) == 1


def test_audit_logger_follows_a_new_directory(tmp_path):
    first_dir, second_dir = tmp_path / "a", tmp_path / "b"
    get_audit_logger("test-moves", first_dir)
    logger = get_audit_logger("test-moves", second_dir)
    logger.info("file=b.csv events=1")
    for handler in logger.handlers:
        handler.flush()

    assert len(logger.handlers) == 1
    written = list(second_dir.glob("audit_*.log"))
    assert len(written) == 1
    assert "file=b.csv" in written[0].read_text(encoding="utf-8")
    assert all(not p.read_text(encoding="utf-8") for p in first_dir.glob("audit_*.log"))

def test_old_logs_are_removed(tmp_path):
    stale = tmp_path / "audit_20000101.log"
    fresh = tmp_path / "audit_29990101.log"
    other = tmp_path / "notes.log"
    for path in (stale, fresh, other):
        path.write_text("x")
    old = time.time() - 10 * 24 * 60 * 60
    os.utime(stale, (old, old))
    os.utime(other, (old, old))

    assert cleanup_old_logs(tmp_path) == 1
    assert not stale.exists()
    assert fresh.exists()
    assert other.exists()


def test_cleanup_of_missing_directory(tmp_path):
    assert cleanup_old_logs(tmp_path / "nope") == 0


def teardown_module(module):
    for name in ("test-writes", "test-dedupe", "test-moves"):
        logger = logging.getLogger(f"threatlens.audit.{name}")
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
