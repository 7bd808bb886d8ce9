"""
Tests for BackupStore.

Tests cover:
1. Human-readable size formatting
2. Backup creation, failures and audit entries
3. Listing (ordering, filtering of invalid names)
4. Info, preview, delete, download and directory stats
"""
import os
import pytest
from datetime import datetime, timedelta

from portal_backup.exceptions import (
    BackupNotFoundException,
    DumpTimeoutException,
    ExecutionException,
    ValidationException,
)
from portal_backup.services.backup_service import format_bytes
from portal_backup.services.filename_validator import is_valid_backup_filename, parse_backup_filename
from portal_backup.tests.conftest import DUMP_CONTENT, canonical_name, write_backup_file


class TestFormatBytes:
    """Tests for format_bytes function"""

    @pytest.mark.parametrize("size, expected", [
        (0, "0 Bytes"),
        (1, "1 Bytes"),
        (1023, "1023 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (1048576, "1 MB"),
        (1073741824, "1 GB"),
        (1099511627776, "1 TB"),
        (1024 * 1024 * 5 + 1024 * 300, "5.3 MB"),
    ])
    def test_formats(self, size, expected):
        assert format_bytes(size) == expected

    def test_rounding_up_moves_to_next_unit(self):
        assert format_bytes(1024 * 1024 - 1) == "1 MB"


class TestCreate:
    """Tests for BackupStore.create"""

    def test_creates_canonical_backup(self, store, backup_dir, invoker):
        record = store.create("manual", actor="admin@example.gd")

        assert (backup_dir / record.filename).exists()
        assert record.backup_type == "manual"
        assert record.size_bytes == len(DUMP_CONTENT)
        assert record.filename.startswith("feedback_backup_")
        assert record.filename.endswith("_manual.sql")
        assert is_valid_backup_filename(record.filename)
        assert invoker.calls == [("dump", record.filename)]

    def test_audits_success_with_size_and_duration(self, store, audit_log):
        record = store.create("scheduled", actor="scheduler")

        entries = audit_log.query(action="create")
        assert len(entries) == 1
        assert entries[0].filename == record.filename
        assert entries[0].actor == "scheduler"
        assert entries[0].status == "success"
        assert entries[0].metadata["file_size"] == record.size_bytes
        assert entries[0].metadata["backup_type"] == "scheduled"
        assert "duration_ms" in entries[0].metadata

    @pytest.mark.parametrize("backup_type", ["weekly", "unknown", "", "manual;rm"])
    def test_rejects_unsupported_type(self, store, invoker, backup_dir, audit_log, backup_type):
        with pytest.raises(ValidationException):
            store.create(backup_type)

        assert invoker.calls == []
        assert list(backup_dir.iterdir()) == []
        assert audit_log.query() == []

    def test_empty_dump_fails_and_leaves_no_file(self, store, invoker, backup_dir, audit_log):
        invoker.dump_content = b""

        with pytest.raises(ExecutionException, match="empty"):
            store.create("manual")

        assert list(backup_dir.iterdir()) == []
        entries = audit_log.query(action="create")
        assert entries[0].status == "failed"
        assert "empty" in entries[0].metadata["error"]

    def test_dump_failure_removes_partial_file(self, store, invoker, backup_dir):
        invoker.dump_error = ExecutionException("Backup dump", "exit code 1: connection refused")

        with pytest.raises(ExecutionException, match="connection refused"):
            store.create("manual")

        assert list(backup_dir.iterdir()) == []

    def test_dump_timeout_propagates(self, store, invoker, audit_log):
        invoker.dump_error = DumpTimeoutException("Backup dump", 300)

        with pytest.raises(DumpTimeoutException):
            store.create("manual")

        assert audit_log.query()[0].status == "failed"

    def test_consecutive_backups_get_distinct_names(self, store):
        first = store.create("manual")
        second = store.create("manual")

        assert first.filename != second.filename
        assert len(store.list()) == 2

    def test_creates_missing_directory(self, store, backup_dir):
        backup_dir.rmdir()

        record = store.create("manual")

        assert (backup_dir / record.filename).exists()


class TestList:
    """Tests for BackupStore.list"""

    def test_newest_first(self, store, backup_dir):
        now = datetime(2026, 10, 1, 12, 0, 0)
        old = canonical_name("manual", now - timedelta(days=2))
        middle = canonical_name("scheduled", now - timedelta(days=1))
        new = canonical_name("pre_restore", now)
        for name in (middle, old, new):
            write_backup_file(backup_dir, name)

        names = [r.filename for r in store.list()]

        assert names == [new, middle, old]

    def test_derives_type_and_size(self, store, backup_dir):
        name = canonical_name("pre_restore", datetime(2026, 10, 1, 12, 0, 0))
        write_backup_file(backup_dir, name, b"x" * 1536)

        record = store.list()[0]

        assert record.backup_type == "pre_restore"
        assert record.created_at == datetime(2026, 10, 1, 12, 0, 0)
        assert record.size_bytes == 1536
        assert record.size_formatted == "1.5 KB"

    def test_skips_invalid_names(self, store, backup_dir, existing_backup):
        write_backup_file(backup_dir, "backup.sql.gz")
        write_backup_file(backup_dir, "notes.txt")
        write_backup_file(backup_dir, "evil name.sql")
        write_backup_file(backup_dir, "evil;rm.sql")
        write_backup_file(backup_dir, "$(id).sql")

        records = store.list()

        assert [r.filename for r in records] == [existing_backup]
        assert all(is_valid_backup_filename(r.filename) for r in records)

    def test_skips_directories_and_symlinks(self, store, backup_dir, tmp_path, existing_backup):
        (backup_dir / "directory.sql").mkdir()
        outside = tmp_path / "secret.sql"
        outside.write_text("secret")
        os.symlink(outside, backup_dir / "link.sql")

        assert [r.filename for r in store.list()] == [existing_backup]

    def test_generic_name_uses_mtime(self, store, backup_dir):
        path = write_backup_file(backup_dir, "imported.sql")
        mtime = datetime(2025, 5, 5, 5, 5, 5).timestamp()
        os.utime(path, (mtime, mtime))

        record = store.list()[0]

        assert record.backup_type == "unknown"
        assert record.created_at == datetime(2025, 5, 5, 5, 5, 5)

    def test_empty_directory(self, store):
        assert store.list() == []


class TestInfoAndPreview:
    """Tests for BackupStore.info and BackupStore.preview"""

    def test_info(self, store, existing_backup):
        record = store.info(existing_backup)

        assert record.filename == existing_backup
        assert record.backup_type == "manual"
        assert record.size_bytes == len(DUMP_CONTENT)

    @pytest.mark.parametrize("filename", ["../secret.sql", "/etc/passwd", "backup.txt", ""])
    def test_info_invalid_name(self, store, filename):
        with pytest.raises(ValidationException):
            store.info(filename)

    def test_info_missing(self, store):
        with pytest.raises(BackupNotFoundException):
            store.info("feedback_backup_20200101_000000_manual.sql")

    def test_info_rejects_symlink_outside_directory(self, store, backup_dir, tmp_path):
        outside = tmp_path / "secret.sql"
        outside.write_text("secret")
        os.symlink(outside, backup_dir / "link.sql")

        with pytest.raises(ValidationException):
            store.info("link.sql")

    def test_preview_stops_after_max_lines(self, store, backup_dir):
        content = "".join(f"line {i}\n" for i in range(10000)).encode()
        write_backup_file(backup_dir, "big.sql", content)

        preview = store.preview("big.sql", 3)

        assert preview == "line 0\nline 1\nline 2"

    def test_preview_shorter_file(self, store, existing_backup):
        preview = store.preview(existing_backup, 50)

        assert preview == DUMP_CONTENT.decode().rstrip("\n")

    def test_preview_zero_lines(self, store, existing_backup):
        assert store.preview(existing_backup, 0) == ""

    def test_preview_negative_lines(self, store, existing_backup):
        with pytest.raises(ValidationException):
            store.preview(existing_backup, -1)

    def test_preview_invalid_and_missing(self, store):
        with pytest.raises(ValidationException):
            store.preview("../../etc/shadow.sql")
        with pytest.raises(BackupNotFoundException):
            store.preview("missing.sql")

    def test_preview_directory_is_not_found(self, store, backup_dir):
        (backup_dir / "dir_backup.sql").mkdir()

        with pytest.raises(BackupNotFoundException):
            store.preview("dir_backup.sql", 5)


class TestDelete:
    """Tests for BackupStore.delete"""

    def test_deletes_and_audits(self, store, backup_dir, existing_backup, audit_log):
        store.delete(existing_backup, actor="admin", client_ip="10.0.0.5", user_agent="pytest")

        assert not (backup_dir / existing_backup).exists()
        entry = audit_log.query(action="delete")[0]
        assert entry.status == "success"
        assert entry.client_ip == "10.0.0.5"
        assert entry.user_agent == "pytest"
        assert entry.metadata["file_size"] == len(DUMP_CONTENT)

    def test_missing_raises_not_found(self, store, audit_log):
        with pytest.raises(BackupNotFoundException):
            store.delete("missing.sql")

        assert audit_log.query(action="delete")[0].status == "failed"

    def test_invalid_name_touches_nothing(self, store, backup_dir, tmp_path, audit_log):
        victim = tmp_path / "victim.sql"
        victim.write_text("keep me")

        with pytest.raises(ValidationException):
            store.delete("../victim.sql")

        assert victim.exists()
        assert audit_log.query() == []


class TestDownloadAndStats:
    """Tests for download_path and dir_stats"""

    def test_download_path_audits(self, store, backup_dir, existing_backup, audit_log):
        path = store.download_path(existing_backup, actor="admin")

        assert path == backup_dir / existing_backup
        assert audit_log.query(action="download")[0].filename == existing_backup

    def test_download_missing(self, store, audit_log):
        with pytest.raises(BackupNotFoundException):
            store.download_path("missing.sql")
        assert audit_log.query() == []

    def test_dir_stats_counts_valid_files_only(self, store, backup_dir):
        write_backup_file(backup_dir, "a.sql", b"x" * 1024)
        write_backup_file(backup_dir, "b.sql", b"x" * 512)
        write_backup_file(backup_dir, "ignored.sql.gz", b"x" * 4096)

        stats = store.dir_stats()

        assert stats.count == 2
        assert stats.total_size_bytes == 1536
        assert stats.total_size_formatted == "1.5 KB"

    def test_dir_stats_empty(self, store):
        stats = store.dir_stats()

        assert stats.count == 0
        assert stats.total_size_formatted == "0 Bytes"
