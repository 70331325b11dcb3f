import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler

from sqlalchemy import select
from sqlalchemy.orm import Session

import config
from models import LogFile

log = logging.getLogger(__name__)

FORMAT = "%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"


def setup_logging(logs_dir: str = config.LOGS_DIR, level: str = config.LOG_LEVEL, backup_count: int = config.LOG_MAX_FILES):
    """Console plus daily-rotated app.log and error.log under logs_dir."""
    root = logging.getLogger()
    root.setLevel(level)
    formatter = logging.Formatter(FORMAT)

    # idempotent across reloads
    for handler in list(root.handlers):
        if getattr(handler, "_storefront", False):
            root.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    handlers = [console]

    os.makedirs(logs_dir, exist_ok=True)
    app_file = TimedRotatingFileHandler(
        os.path.join(logs_dir, "app.log"), when="midnight", backupCount=backup_count, encoding="utf-8"
    )
    app_file.setLevel(level)
    error_file = TimedRotatingFileHandler(
        os.path.join(logs_dir, "error.log"), when="midnight", backupCount=backup_count, encoding="utf-8"
    )
    error_file.setLevel(logging.ERROR)
    handlers += [app_file, error_file]

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._storefront = True
        root.addHandler(handler)
    log.info("Logging configured (level=%s, dir=%s)", level, logs_dir)


def _is_log_file(name: str) -> bool:
    # rotated files look like app.log.2026-10-17
    return name.endswith(".log") or name.endswith(".gz") or ".log." in name


def sync_log_files(db: Session, logs_dir: str = config.LOGS_DIR) -> int:
    """Upsert every log file found in logs_dir into log_files, keyed by path."""
    directory = os.path.abspath(logs_dir)
    try:
        entries = list(os.scandir(directory))
    except FileNotFoundError:
        log.debug("Log directory %s not found, skipping index sync", directory)
        return 0

    synced = 0
    for entry in entries:
        if not entry.is_file() or not _is_log_file(entry.name):
            continue
        stat = entry.stat()
        row = db.scalar(select(LogFile).where(LogFile.file_path == entry.path))
        if row is None:
            row = LogFile(file_path=entry.path)
            db.add(row)
        row.file_name = entry.name
        row.level = "error" if "error" in entry.name else "app"
        row.size_bytes = stat.st_size
        row.last_modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        synced += 1
    db.commit()
    log.info("Indexed %d log files from %s", synced, directory)
    return synced
