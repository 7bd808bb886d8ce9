"""
Wrapper around the PostgreSQL client tools used for dump and restore.

Commands are built as argument lists (no shell) from trusted configuration
only. Paths are supplied by BackupStore, which joins its own directory with
an already-validated basename.
"""
import logging
import os
import subprocess
from pathlib import Path
from typing import Optional, List

from portal_backup.config import DatabaseConfig, BackupConfig
from portal_backup.exceptions import ExecutionException, DumpTimeoutException

logger = logging.getLogger("portal_backup.dump")

MAINTENANCE_DATABASE = "postgres"


def quote_identifier(name: str) -> str:
    """Quote a SQL identifier for use in a psql command"""
    return '"' + name.replace('"', '""') + '"'


class DumpInvoker:
    """Runs pg_dumpall/psql as subprocesses with bounded execution time"""

    def __init__(self, db_config: DatabaseConfig, backup_config: BackupConfig):
        self.db_config = db_config
        self.dump_timeout = backup_config.dump_timeout_seconds
        self.restore_timeout = backup_config.restore_timeout_seconds
        self.pg_dumpall_bin = backup_config.pg_dumpall_bin
        self.psql_bin = backup_config.psql_bin

    def _env(self) -> dict:
        env = os.environ.copy()
        env["PGPASSWORD"] = self.db_config.password
        return env

    def _connection_args(self) -> List[str]:
        return [
            "-h", self.db_config.host,
            "-p", str(self.db_config.port),
            "-U", self.db_config.user,
        ]

    def _psql_args(self, database: str) -> List[str]:
        return [self.psql_bin, *self._connection_args(), "-d", database, "--no-password"]

    def _run(self, operation: str, args: List[str], timeout: float,
             stdin=None, stdout=subprocess.PIPE) -> str:
        """
        Run one subprocess to completion.

        Raises:
            DumpTimeoutException: if the process outlives ``timeout``; it is killed first
            ExecutionException: if the process cannot start or exits nonzero
        """
        logger.info(f"Running {operation}: {args[0]}")
        try:
            proc = subprocess.Popen(
                args,
                stdin=stdin,
                stdout=stdout,
                stderr=subprocess.PIPE,
                env=self._env(),
            )
        except OSError as e:
            raise ExecutionException(operation, f"could not start {args[0]}: {e}")

        try:
            out, err = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.communicate()
            logger.error(f"{operation} killed after {timeout}s timeout")
            raise DumpTimeoutException(operation, timeout)

        stderr_text = (err or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            logger.error(f"{operation} exited with {proc.returncode}: {stderr_text}")
            raise ExecutionException(
                operation,
                f"exit code {proc.returncode}: {stderr_text or 'no error output'}",
                stderr_text,
            )

        if isinstance(out, bytes):
            return out.decode("utf-8", errors="replace")
        return out or ""

    def dump(self, output_path: Path) -> None:
        """Write a complete cluster dump (roles and databases) to output_path"""
        args = [
            self.pg_dumpall_bin,
            *self._connection_args(),
            "--no-password",
            "--clean",
            "--if-exists",
        ]
        with open(output_path, "wb") as f:
            self._run("Backup dump", args, self.dump_timeout, stdout=f)
        os.chmod(output_path, 0o644)

    def drop_database(self) -> None:
        sql = f"DROP DATABASE IF EXISTS {quote_identifier(self.db_config.name)} WITH (FORCE);"
        args = self._psql_args(MAINTENANCE_DATABASE) + ["-v", "ON_ERROR_STOP=1", "-c", sql]
        self._run("Drop database", args, self.restore_timeout)

    def create_database(self) -> None:
        sql = (
            f"CREATE DATABASE {quote_identifier(self.db_config.name)} "
            f"OWNER {quote_identifier(self.db_config.user)};"
        )
        args = self._psql_args(MAINTENANCE_DATABASE) + ["-v", "ON_ERROR_STOP=1", "-c", sql]
        self._run("Create database", args, self.restore_timeout)

    def load(self, input_path: Path) -> None:
        """Replay a dump file through psql, streaming it on stdin"""
        args = self._psql_args(MAINTENANCE_DATABASE)
        with open(input_path, "rb") as f:
            self._run("Restore load", args, self.restore_timeout, stdin=f)

    def count_tables(self) -> int:
        """Count tables in the public schema of the restored database"""
        sql = "SELECT COUNT(*) FROM information_schema.tables WHERE table_schema = 'public'"
        args = self._psql_args(self.db_config.name) + ["-t", "-A", "-c", sql]
        output = self._run("Restore verify", args, self.restore_timeout)
        try:
            return int(output.strip() or 0)
        except ValueError:
            raise ExecutionException("Restore verify", f"unexpected table count output: {output!r}")
