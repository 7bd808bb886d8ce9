"""
Backup store for the portal database.
Creates, lists, previews and deletes SQL dumps in a single backup directory.

This is the only component that writes into the backup directory. Every
filename coming from a caller is checked by the filename validator before
it is joined onto the directory path.
"""
import logging
import os
import threading
import time
from datetime import datetime, timedelta
from itertools import islice
from pathlib import Path
from typing import List, Optional

from portal_backup.config import BackupConfig
from portal_backup.constants import (
    AUDIT_ACTION_CREATE,
    AUDIT_ACTION_DELETE,
    AUDIT_ACTION_DOWNLOAD,
    AUDIT_STATUS_FAILED,
    AUDIT_STATUS_SUCCESS,
    BACKUP_TYPE_MANUAL,
    BACKUP_TYPE_UNKNOWN,
    CREATABLE_BACKUP_TYPES,
    DEFAULT_PREVIEW_LINES,
    SIZE_UNITS,
)
from portal_backup.exceptions import (
    BackupNotFoundException,
    ExecutionException,
    ValidationException,
)
from portal_backup.schemas import BackupRecord, DirStats
from portal_backup.services.audit_service import AuditLog
from portal_backup.services.dump_invoker import DumpInvoker
from portal_backup.services.filename_validator import (
    build_backup_filename,
    is_valid_backup_filename,
    parse_backup_filename,
)

logger = logging.getLogger("portal_backup.backup")


def format_bytes(size_bytes: int) -> str:
    """
    Format a byte count as a human-readable string.

    Examples: 0 -> "0 Bytes", 1024 -> "1 KB", 1536 -> "1.5 KB"
    """
    if size_bytes <= 0:
        return "0 Bytes"

    value = float(size_bytes)
    unit_index = 0
    while value >= 1024 and unit_index < len(SIZE_UNITS) - 1:
        value /= 1024
        unit_index += 1

    text = f"{value:.1f}"
    # 1023.96 KB rounds up to the next unit
    if text == "1024.0" and unit_index < len(SIZE_UNITS) - 1:
        text = "1.0"
        unit_index += 1

    if text.endswith(".0"):
        text = text[:-2]
    return f"{text} {SIZE_UNITS[unit_index]}"


class BackupStore:
    """Service owning the backup directory"""

    def __init__(self, config: BackupConfig, invoker: DumpInvoker, audit: AuditLog):
        self.backup_dir = Path(config.backup_dir)
        self.subject = config.subject
        self.invoker = invoker
        self.audit = audit
        # Held by create/delete and for the whole lifetime of a restore
        self.mutation_lock = threading.RLock()

    def ensure_backup_dir(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True, mode=0o755)

    def resolve_path(self, filename: str) -> Path:
        """
        Build the trusted path for a backup filename.

        Raises:
            ValidationException: if the filename is not a safe backup basename
        """
        if not is_valid_backup_filename(filename):
            raise ValidationException("filename", "invalid backup filename")

        path = self.backup_dir / filename
        if path.resolve().parent != self.backup_dir.resolve():
            raise ValidationException("filename", "backup path escapes the backup directory")
        return path

    def _build_record(self, filename: str, stat_result: os.stat_result) -> BackupRecord:
        parsed = parse_backup_filename(filename)
        if parsed:
            created_at, backup_type = parsed
        else:
            created_at = datetime.fromtimestamp(stat_result.st_mtime)
            backup_type = BACKUP_TYPE_UNKNOWN

        return BackupRecord(
            filename=filename,
            created_at=created_at,
            backup_type=backup_type,
            size_bytes=stat_result.st_size,
            size_formatted=format_bytes(stat_result.st_size),
        )

    def _next_filename(self, backup_type: str) -> str:
        """Generate a canonical filename that is not taken yet"""
        timestamp = datetime.now().replace(microsecond=0)
        filename = build_backup_filename(self.subject, backup_type, timestamp)
        while (self.backup_dir / filename).exists():
            timestamp += timedelta(seconds=1)
            filename = build_backup_filename(self.subject, backup_type, timestamp)
        return filename

    def _remove_partial(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial backup {path.name}: {e}")

    def create(self, backup_type: str = BACKUP_TYPE_MANUAL, actor: str = "system",
               client_ip: Optional[str] = None, user_agent: Optional[str] = None) -> BackupRecord:
        """
        Create a new database backup.

        Args:
            backup_type: "manual", "scheduled" or "pre_restore"
            actor: Who requested the backup (for the audit log)

        Returns:
            BackupRecord of the new file

        Raises:
            ValidationException: unsupported backup type
            ExecutionException: dump failed, timed out or produced an empty file
        """
        if backup_type not in CREATABLE_BACKUP_TYPES:
            raise ValidationException("backup_type", f"unsupported backup type: {backup_type}")

        with self.mutation_lock:
            self.ensure_backup_dir()
            filename = self._next_filename(backup_type)
            path = self.resolve_path(filename)

            logger.info(f"Creating {backup_type} backup: {filename}")
            start = time.monotonic()
            try:
                self.invoker.dump(path)
                stat_result = path.stat()
                if stat_result.st_size == 0:
                    raise ExecutionException("Backup dump", "dump produced an empty file")
            except (ExecutionException, OSError) as e:
                duration_ms = int((time.monotonic() - start) * 1000)
                self._remove_partial(path)
                error = e if isinstance(e, ExecutionException) else ExecutionException("Backup dump", str(e))
                logger.error(f"✗ Backup failed: {filename}: {error}")
                self.audit.record(
                    AUDIT_ACTION_CREATE, filename, actor, AUDIT_STATUS_FAILED,
                    client_ip, user_agent,
                    backup_type=backup_type, duration_ms=duration_ms, error=str(error),
                )
                if error is e:
                    raise
                raise error from e

            duration_ms = int((time.monotonic() - start) * 1000)
            record = self._build_record(filename, stat_result)

        logger.info(f"✓ Backup created: {filename} ({record.size_formatted}) in {duration_ms}ms")
        self.audit.record(
            AUDIT_ACTION_CREATE, filename, actor, AUDIT_STATUS_SUCCESS,
            client_ip, user_agent,
            backup_type=backup_type, file_size=record.size_bytes, duration_ms=duration_ms,
        )
        return record

    def list(self) -> List[BackupRecord]:
        """Get all backups ordered by creation date (newest first)"""
        self.ensure_backup_dir()
        records = []
        with os.scandir(self.backup_dir) as entries:
            for entry in entries:
                # Planted or corrupted names are never reported
                if not is_valid_backup_filename(entry.name):
                    continue
                try:
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    stat_result = entry.stat(follow_symlinks=False)
                except FileNotFoundError:
                    continue
                records.append(self._build_record(entry.name, stat_result))

        records.sort(key=lambda r: (r.created_at, r.filename), reverse=True)
        return records

    def info(self, filename: str) -> BackupRecord:
        """
        Get a single backup.

        Raises:
            ValidationException: invalid filename
            BackupNotFoundException: file does not exist
        """
        path = self.resolve_path(filename)
        try:
            stat_result = path.stat()
        except FileNotFoundError:
            raise BackupNotFoundException(filename)
        if not path.is_file():
            raise BackupNotFoundException(filename)
        return self._build_record(filename, stat_result)

    def preview(self, filename: str, max_lines: int = DEFAULT_PREVIEW_LINES) -> str:
        """Return the first max_lines lines of a backup without reading the whole file"""
        if max_lines < 0:
            raise ValidationException("max_lines", "must not be negative")

        self.info(filename)
        path = self.resolve_path(filename)
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                lines = [line.rstrip("\n") for line in islice(f, max_lines)]
        except (FileNotFoundError, IsADirectoryError):
            raise BackupNotFoundException(filename)
        return "\n".join(lines)

    def delete(self, filename: str, actor: str = "system",
               client_ip: Optional[str] = None, user_agent: Optional[str] = None) -> None:
        """
        Delete a backup file.

        Raises:
            ValidationException: invalid filename
            BackupNotFoundException: file does not exist
            ExecutionException: file could not be removed
        """
        path = self.resolve_path(filename)

        with self.mutation_lock:
            try:
                size_bytes = path.stat().st_size
                path.unlink()
            except FileNotFoundError:
                self.audit.record(
                    AUDIT_ACTION_DELETE, filename, actor, AUDIT_STATUS_FAILED,
                    client_ip, user_agent, error="Backup not found",
                )
                raise BackupNotFoundException(filename)
            except OSError as e:
                logger.error(f"Failed to delete backup {filename}: {e}")
                self.audit.record(
                    AUDIT_ACTION_DELETE, filename, actor, AUDIT_STATUS_FAILED,
                    client_ip, user_agent, error=str(e),
                )
                raise ExecutionException("Backup delete", str(e)) from e

        logger.info(f"Deleted backup: {filename}")
        self.audit.record(
            AUDIT_ACTION_DELETE, filename, actor, AUDIT_STATUS_SUCCESS,
            client_ip, user_agent, file_size=size_bytes,
        )

    def download_path(self, filename: str, actor: str = "system",
                      client_ip: Optional[str] = None, user_agent: Optional[str] = None) -> Path:
        """Get the trusted path of a backup for streaming download"""
        record = self.info(filename)
        self.audit.record(
            AUDIT_ACTION_DOWNLOAD, filename, actor, AUDIT_STATUS_SUCCESS,
            client_ip, user_agent, file_size=record.size_bytes,
        )
        return self.backup_dir / record.filename

    def dir_stats(self) -> DirStats:
        """Get count and total size of the backups in the directory"""
        records = self.list()
        total = sum(r.size_bytes for r in records)
        return DirStats(
            count=len(records),
            total_size_bytes=total,
            total_size_formatted=format_bytes(total),
        )
