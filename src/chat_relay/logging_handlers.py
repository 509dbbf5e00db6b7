"""Custom logging handler utilities."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional


def dated_log_path(directory: str | Path, prefix: str, moment: datetime) -> Path:
    """`<directory>/<YYYY-MM-DD>/<prefix>_<YYYY-MM-DD_HH-MM-SS>_UTC.log` for ``moment``."""

    utc = moment.astimezone(timezone.utc)
    stamp = utc.strftime("%Y-%m-%d_%H-%M-%S")
    return Path(directory).resolve() / utc.strftime("%Y-%m-%d") / f"{prefix}_{stamp}_UTC.log"


class DateStampedFileHandler(logging.FileHandler):
    """File handler writing one UTC-stamped file per process start."""

    def __init__(
        self,
        directory: str | Path = "logs/app",
        *,
        prefix: str = "relay",
        encoding: str | None = "utf-8",
        mode: str = "a",
        delay: bool = False,
        errors: Optional[str] = None,
        current_time: datetime | None = None,
    ) -> None:
        log_path = dated_log_path(
            directory, prefix, current_time or datetime.now(timezone.utc)
        )
        log_path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(log_path, mode=mode, encoding=encoding, delay=delay, errors=errors)


def _expired_logs(directory: Path, cutoff: datetime) -> Iterator[Path]:
    for path in directory.rglob("*.log"):
        try:
            modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        except FileNotFoundError:
            continue
        if modified < cutoff:
            yield path


def _prune_empty_folders(directory: Path, logger: logging.Logger | None) -> None:
    for child in directory.iterdir():
        if not child.is_dir() or any(child.iterdir()):
            continue
        try:
            child.rmdir()
        except OSError as exc:
            if logger:
                logger.debug("Could not remove %s: %s", child, exc)


def cleanup_old_logs(
    log_directories: Iterable[str | Path],
    retention_hours: int,
    logger: logging.Logger | None = None,
) -> tuple[int, int]:
    """Remove `.log` files last written more than ``retention_hours`` ago.

    A retention of 0 or less disables the sweep. Date folders emptied by the
    sweep are removed as well. Returns ``(deleted, errors)``.
    """
    if retention_hours <= 0:
        return (0, 0)

    cutoff = datetime.now(timezone.utc) - timedelta(hours=retention_hours)
    deleted = errors = 0

    for directory in map(Path, log_directories):
        if not directory.is_dir():
            continue
        for path in list(_expired_logs(directory, cutoff)):
            try:
                path.unlink()
            except OSError as exc:
                errors += 1
                if logger:
                    logger.warning("Failed to delete %s: %s", path, exc)
                continue
            deleted += 1
            if logger:
                logger.debug("Deleted old log file: %s", path)
        _prune_empty_folders(directory, logger)

    if logger and deleted:
        logger.info("Log cleanup removed %d file(s) with %d error(s)", deleted, errors)
    return (deleted, errors)


__all__ = ["DateStampedFileHandler", "cleanup_old_logs", "dated_log_path"]
