import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

from chat_relay.logging_handlers import (
    DateStampedFileHandler,
    cleanup_old_logs,
    dated_log_path,
)


def test_dated_log_path_layout(tmp_path) -> None:
    moment = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)

    path = dated_log_path(tmp_path / "app", "relay", moment)

    assert path == (tmp_path / "app").resolve() / "2024-05-26" / "relay_2024-05-26_12-34-56_UTC.log"


def test_dated_log_path_converts_offsets_to_utc(tmp_path) -> None:
    jakarta = timezone(timedelta(hours=7))

    path = dated_log_path(tmp_path, "relay", datetime(2023, 1, 2, 3, 4, 5, tzinfo=jakarta))

    assert path.parent.name == "2023-01-01"
    assert path.name == "relay_2023-01-01_20-04-05_UTC.log"


def test_handler_writes_records_to_dated_file(tmp_path) -> None:
    current = datetime(2024, 5, 26, 12, 34, 56, tzinfo=timezone.utc)
    handler = DateStampedFileHandler(directory=tmp_path, current_time=current)
    logger = logging.getLogger("chat_relay.tests.file_handler")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        logger.info("relay ready")
        handler.flush()

        file_path = Path(handler.baseFilename)
        assert file_path == dated_log_path(tmp_path, "relay", current)
        assert "relay ready" in file_path.read_text(encoding="utf-8")
    finally:
        logger.removeHandler(handler)
        handler.close()


def _age(path: Path, hours: float) -> Path:
    moment = (datetime.now(timezone.utc) - timedelta(hours=hours)).timestamp()
    os.utime(path, (moment, moment))
    return path


def _write_log(directory: Path, name: str, hours_old: float) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(name, encoding="utf-8")
    return _age(path, hours_old)


def test_cleanup_keeps_logs_inside_retention_window(tmp_path) -> None:
    log_dir = tmp_path / "logs"
    expired = _write_log(log_dir, "expired.log", hours_old=72)
    yesterday = _write_log(log_dir, "yesterday.log", hours_old=24)
    fresh = _write_log(log_dir, "fresh.log", hours_old=0)
    notes = _write_log(log_dir, "notes.txt", hours_old=500)

    deleted, errors = cleanup_old_logs([log_dir], retention_hours=48)

    assert (deleted, errors) == (1, 0)
    assert not expired.exists()
    assert yesterday.exists() and fresh.exists()
    assert notes.exists()


def test_cleanup_is_disabled_by_zero_retention(tmp_path) -> None:
    ancient = _write_log(tmp_path / "logs", "ancient.log", hours_old=24 * 100)

    assert cleanup_old_logs([tmp_path / "logs"], retention_hours=0) == (0, 0)
    assert ancient.exists()


def test_cleanup_prunes_emptied_date_folders(tmp_path) -> None:
    log_dir = tmp_path / "logs"
    emptied = log_dir / "2024-01-01"
    kept = log_dir / "2024-01-02"
    _write_log(emptied, "relay_old.log", hours_old=24 * 100)
    _write_log(kept, "relay_new.log", hours_old=1)

    deleted, _ = cleanup_old_logs([log_dir, tmp_path / "missing"], retention_hours=48)

    assert deleted == 1
    assert not emptied.exists()
    assert kept.exists()
