"""
Shared fixtures for backup subsystem tests.
"""
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path

os.environ.setdefault("PORTAL_BACKUP_DATABASE_URL", "sqlite://")
os.environ.setdefault("PORTAL_BACKUP_LOG_DIR", tempfile.mkdtemp(prefix="portal-backup-logs-"))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal_backup.infrastructure.database import Base
from portal_backup import models  # noqa: F401
from portal_backup.config import BackupConfig
from portal_backup.services.audit_service import AuditLog
from portal_backup.services.backup_service import BackupStore
from portal_backup.services.filename_validator import build_backup_filename
from portal_backup.services.restore_service import RestoreEngine

DUMP_CONTENT = b"--\n-- PostgreSQL database cluster dump\n--\nSET statement_timeout = 0;\n"


class FakeDumpInvoker:
    """Stands in for pg_dumpall/psql and records every call"""

    def __init__(self):
        self.calls = []
        self.dump_content = DUMP_CONTENT
        self.dump_error = None
        self.load_error = None
        self.table_count = 12
        self.load_started = threading.Event()
        self.release_load = None

    def dump(self, output_path: Path) -> None:
        self.calls.append(("dump", output_path.name))
        if self.dump_error is not None:
            output_path.write_bytes(b"partial")
            raise self.dump_error
        output_path.write_bytes(self.dump_content)

    def drop_database(self) -> None:
        self.calls.append(("drop_database",))

    def create_database(self) -> None:
        self.calls.append(("create_database",))

    def load(self, input_path: Path) -> None:
        self.calls.append(("load", input_path.name))
        self.load_started.set()
        if self.release_load is not None:
            self.release_load.wait(timeout=5)
        if self.load_error is not None:
            raise self.load_error

    def count_tables(self) -> int:
        self.calls.append(("count_tables",))
        return self.table_count

    def call_names(self):
        return [call[0] for call in self.calls]


def write_backup_file(backup_dir: Path, filename: str, content: bytes = DUMP_CONTENT) -> Path:
    """Place a backup file directly in the directory (test data setup)"""
    path = backup_dir / filename
    path.write_bytes(content)
    return path


def canonical_name(backup_type: str, timestamp: datetime, subject: str = "feedback") -> str:
    return build_backup_filename(subject, backup_type, timestamp)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return path


@pytest.fixture
def backup_config(backup_dir):
    return BackupConfig(backup_dir=backup_dir, subject="feedback",
                        dump_timeout_seconds=5, restore_timeout_seconds=5)


@pytest.fixture
def invoker():
    return FakeDumpInvoker()


@pytest.fixture
def audit_log(session_factory):
    return AuditLog(session_factory)


@pytest.fixture
def store(backup_config, invoker, audit_log):
    return BackupStore(backup_config, invoker, audit_log)


@pytest.fixture
def restore_engine(store, invoker, audit_log):
    return RestoreEngine(store, invoker, audit_log)


@pytest.fixture
def existing_backup(backup_dir):
    """A manual backup from yesterday"""
    filename = "feedback_backup_20260101_020000_manual.sql"
    write_backup_file(backup_dir, filename)
    return filename
