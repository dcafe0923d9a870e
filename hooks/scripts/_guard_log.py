#!/usr/bin/env python3
"""Append-only audit log for governance guard decisions.

Log format (one record per line):
    TIMESTAMP [LEVEL] MESSAGE

Timestamps are UTC. Several hook processes may append to the same file at
once, so every record is written with a single os.write() on a descriptor
opened with O_APPEND, and capped at MAX_RECORD_BYTES so the kernel never
splits it. The log is never rotated, truncated or rewritten here.

Logging is best-effort: every failure is absorbed and never changes the
verdict that is being recorded.
"""

import os
from datetime import datetime, timezone
from pathlib import Path

LEVELS = ("ALLOW", "BLOCK", "WARN", "ERROR", "SYMLINK")

MAX_RECORD_BYTES = 4096
"""Upper bound for one encoded record, newline included."""

MAX_PATH_PREVIEW_LENGTH = 60
"""Maximum path length for log display. Paths longer than this are truncated."""

MAX_COMMAND_PREVIEW_LENGTH = 80
"""Maximum command length for log display. Commands longer than this are truncated."""


def truncate_path(path: str, max_length: int = MAX_PATH_PREVIEW_LENGTH) -> str:
    """Truncate path for display in logs, keeping the tail."""
    if len(path) <= max_length:
        return path
    return f"...{path[-(max_length - 3) :]}"


def truncate_command(command: str, max_length: int = MAX_COMMAND_PREVIEW_LENGTH) -> str:
    """Truncate command for display in logs, keeping the head."""
    if len(command) <= max_length:
        return command
    return f"{command[: max_length - 3]}..."


def format_record(level: str, message: str, now: datetime | None = None) -> bytes:
    """Build one encoded log record.

    Embedded line breaks are escaped so a record always occupies exactly one
    line, and the result is clipped to MAX_RECORD_BYTES.

    Args:
        level: One of LEVELS.
        message: Free-form message.
        now: Timestamp override (tests); defaults to the current UTC time.

    Returns:
        UTF-8 encoded record ending in a newline.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    timestamp = now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    flat = message.replace("\r", "\\r").replace("\n", "\\n")
    line = f"{timestamp} [{level}] {flat}".encode("utf-8", errors="replace")
    if len(line) > MAX_RECORD_BYTES - 1:
        # Drop a multi-byte character cut in half by the clip
        clipped = line[: MAX_RECORD_BYTES - 4].decode("utf-8", errors="ignore")
        line = clipped.encode("utf-8") + b"..."
    return line + b"\n"


class AuditLogger:
    """Best-effort appender for one audit log file.

    Args:
        log_file: Location of the log. ``None`` disables logging.
    """

    def __init__(self, log_file: str | os.PathLike | None):
        self.log_file = Path(log_file) if log_file is not None else None

    def write(self, level: str, message: str) -> None:
        """Append one record. Never raises."""
        if self.log_file is None:
            return
        try:
            record = format_record(level, message)
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.log_file, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                os.write(fd, record)
            finally:
                os.close(fd)
        except Exception:
            # Silent fail - a broken log must not alter the verdict
            pass
