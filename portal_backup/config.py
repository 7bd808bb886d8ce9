"""
Trusted configuration for the backup subsystem.

Everything here comes from the process environment. Request data never
reaches these models, so values may be used to build subprocess commands.
"""
import os
from pathlib import Path

from pydantic import BaseModel, Field

from portal_backup.constants import (
    DEFAULT_DUMP_TIMEOUT_SECONDS,
    DEFAULT_RESTORE_TIMEOUT_SECONDS,
    DEFAULT_SCHEDULER_TIMEZONE,
)


class DatabaseConfig(BaseModel):
    """Connection parameters of the portal database protected by backups"""
    host: str = "feedback_db"
    port: int = Field(default=5432, ge=1, le=65535)
    user: str = "feedback_user"
    name: str = "feedback"
    password: str = ""


class BackupConfig(BaseModel):
    backup_dir: Path = Path("/tmp/gea_backups")
    subject: str = Field(default="feedback", pattern=r"^[A-Za-z0-9-]+$")
    dump_timeout_seconds: float = Field(default=DEFAULT_DUMP_TIMEOUT_SECONDS, gt=0)
    restore_timeout_seconds: float = Field(default=DEFAULT_RESTORE_TIMEOUT_SECONDS, gt=0)
    pg_dumpall_bin: str = "pg_dumpall"
    psql_bin: str = "psql"
    scheduler_timezone: str = DEFAULT_SCHEDULER_TIMEZONE
    api_key: str = Field(default="change-me", min_length=1)


def load_database_config() -> DatabaseConfig:
    return DatabaseConfig(
        host=os.getenv("FEEDBACK_DB_HOST", "feedback_db"),
        port=int(os.getenv("FEEDBACK_DB_PORT", "5432")),
        user=os.getenv("FEEDBACK_DB_USER", "feedback_user"),
        name=os.getenv("FEEDBACK_DB_NAME", "feedback"),
        password=os.getenv("FEEDBACK_DB_PASSWORD", ""),
    )


def load_backup_config() -> BackupConfig:
    return BackupConfig(
        backup_dir=Path(os.getenv("PORTAL_BACKUP_DIR", "/tmp/gea_backups")),
        subject=os.getenv("PORTAL_BACKUP_SUBJECT", "feedback"),
        dump_timeout_seconds=float(
            os.getenv("PORTAL_BACKUP_DUMP_TIMEOUT", DEFAULT_DUMP_TIMEOUT_SECONDS)
        ),
        restore_timeout_seconds=float(
            os.getenv("PORTAL_BACKUP_RESTORE_TIMEOUT", DEFAULT_RESTORE_TIMEOUT_SECONDS)
        ),
        pg_dumpall_bin=os.getenv("PORTAL_BACKUP_PG_DUMPALL", "pg_dumpall"),
        psql_bin=os.getenv("PORTAL_BACKUP_PSQL", "psql"),
        scheduler_timezone=os.getenv("PORTAL_BACKUP_TIMEZONE", DEFAULT_SCHEDULER_TIMEZONE),
        api_key=os.getenv("PORTAL_BACKUP_API_KEY", "change-me"),
    )
