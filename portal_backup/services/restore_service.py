"""
Database restore from a backup file.

Flow: validate input -> create a pre_restore safety backup -> drop,
recreate and reload the database -> verify. Only one restore may run per
process; a concurrent request is rejected instead of queued. Once the
database has been dropped there is no cancellation.
"""
import enum
import logging
import threading
import time
from typing import Callable, Optional

from portal_backup.constants import (
    AUDIT_ACTION_RESTORE,
    AUDIT_STATUS_FAILED,
    AUDIT_STATUS_IN_PROGRESS,
    AUDIT_STATUS_SUCCESS,
    BACKUP_TYPE_PRE_RESTORE,
    RESTORE_CONFIRMATION_PHRASE,
    RESTORE_STEP_COMPLETE,
    RESTORE_STEP_DROP_SCHEMA,
    RESTORE_STEP_FAILED,
    RESTORE_STEP_LOAD_DATA,
    RESTORE_STEP_LOAD_SCHEMA,
    RESTORE_STEP_PERCENT,
    RESTORE_STEP_SAFETY_BACKUP,
    RESTORE_STEP_VALIDATE,
    RESTORE_STEP_VERIFY,
)
from portal_backup.exceptions import (
    BackupNotFoundException,
    ExecutionException,
    RestoreConflictException,
    RestoreFailedException,
    ValidationException,
)
from portal_backup.schemas import RestoreResult
from portal_backup.services.audit_service import AuditLog
from portal_backup.services.backup_service import BackupStore
from portal_backup.services.dump_invoker import DumpInvoker

logger = logging.getLogger("portal_backup.restore")

# (step, message, percent)
ProgressSink = Callable[[str, str, int], None]


class RestoreState(str, enum.Enum):
    IDLE = "idle"
    VALIDATING_INPUT = "validating_input"
    CREATING_SAFETY_BACKUP = "creating_safety_backup"
    RESTORING = "restoring"
    COMPLETED = "completed"
    FAILED = "failed"


class RestoreEngine:
    """Runs at most one database restore at a time"""

    def __init__(self, store: BackupStore, invoker: DumpInvoker, audit: AuditLog):
        self.store = store
        self.invoker = invoker
        self.audit = audit
        self._restore_lock = threading.Lock()
        self.state = RestoreState.IDLE

    @property
    def in_progress(self) -> bool:
        return self._restore_lock.locked()

    def _notify(self, progress: Optional[ProgressSink], step: str, message: str, percent: int) -> None:
        logger.info(f"[Restore] {percent}% - {step}: {message}")
        if progress is None:
            return
        try:
            progress(step, message, percent)
        except Exception as e:
            logger.warning(f"Restore progress sink raised at step {step}: {e}")

    def _step(self, progress: Optional[ProgressSink], step: str, message: str) -> int:
        percent = RESTORE_STEP_PERCENT[step]
        self._notify(progress, step, message, percent)
        return percent

    def _validate(self, filename: str, confirm: bool, confirmation_text: str) -> None:
        # Raises ValidationException / BackupNotFoundException
        self.store.info(filename)

        if confirm is not True or confirmation_text != RESTORE_CONFIRMATION_PHRASE:
            raise ValidationException(
                "confirmation",
                f'restore requires confirm=true and confirmation_text="{RESTORE_CONFIRMATION_PHRASE}"',
            )

    def restore(self, filename: str, confirm: bool, confirmation_text: str,
                progress: Optional[ProgressSink] = None, actor: str = "admin",
                client_ip: Optional[str] = None,
                user_agent: Optional[str] = None) -> RestoreResult:
        """
        Restore the database from a backup file.

        A pre_restore safety backup is always taken first and is never
        removed afterwards, whatever the outcome.

        Args:
            filename: Backup to restore from
            confirm: Must be True
            confirmation_text: Must equal "RESTORE DATABASE"
            progress: Optional sink called as progress(step, message, percent)

        Returns:
            RestoreResult with status "success"

        Raises:
            RestoreConflictException: another restore is running
            ValidationException: bad filename or missing confirmation
            BackupNotFoundException: backup does not exist
            ExecutionException: safety backup could not be created
            RestoreFailedException: restore failed; .result carries the safety backup
        """
        if not self._restore_lock.acquire(blocking=False):
            logger.warning(f"Rejected restore of {filename}: another restore is in progress")
            raise RestoreConflictException()

        previous_state = self.state
        try:
            with self.store.mutation_lock:
                return self._run(filename, confirm, confirmation_text, progress,
                                 actor, client_ip, user_agent)
        except (ValidationException, BackupNotFoundException):
            self.state = previous_state
            raise
        finally:
            if self.state in (RestoreState.CREATING_SAFETY_BACKUP, RestoreState.RESTORING):
                self.state = RestoreState.FAILED
            self._restore_lock.release()

    def _run(self, filename: str, confirm: bool, confirmation_text: str,
             progress: Optional[ProgressSink], actor: str,
             client_ip: Optional[str], user_agent: Optional[str]) -> RestoreResult:
        self.state = RestoreState.VALIDATING_INPUT
        self._validate(filename, confirm, confirmation_text)

        start = time.monotonic()
        result = RestoreResult(status=AUDIT_STATUS_SUCCESS)
        self._step(progress, RESTORE_STEP_VALIDATE, f"Restore of {filename} confirmed")
        self.audit.record(AUDIT_ACTION_RESTORE, filename, actor, AUDIT_STATUS_IN_PROGRESS,
                          client_ip, user_agent)

        # Step 1: safety backup, before the live database is touched
        self.state = RestoreState.CREATING_SAFETY_BACKUP
        percent = self._step(progress, RESTORE_STEP_SAFETY_BACKUP,
                             "Creating safety backup of current database...")
        try:
            safety_backup = self.store.create(BACKUP_TYPE_PRE_RESTORE, actor=actor,
                                              client_ip=client_ip, user_agent=user_agent)
        except ExecutionException as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            self.state = RestoreState.FAILED
            self._notify(progress, RESTORE_STEP_FAILED,
                         "Safety backup failed, database was not modified", percent)
            self.audit.record(AUDIT_ACTION_RESTORE, filename, actor, AUDIT_STATUS_FAILED,
                              client_ip, user_agent, duration_ms=duration_ms, error=str(e))
            raise
        result.safety_backup_filename = safety_backup.filename

        # Step 2: replace the database
        self.state = RestoreState.RESTORING
        target_path = self.store.resolve_path(filename)
        try:
            percent = self._step(progress, RESTORE_STEP_DROP_SCHEMA, "Dropping existing database...")
            self.invoker.drop_database()

            percent = self._step(progress, RESTORE_STEP_LOAD_SCHEMA, "Recreating empty database...")
            self.invoker.create_database()

            percent = self._step(progress, RESTORE_STEP_LOAD_DATA, "Restoring database from backup...")
            self.invoker.load(target_path)

            percent = self._step(progress, RESTORE_STEP_VERIFY, "Verifying database restoration...")
            result.tables_restored = self.invoker.count_tables()
        except Exception as e:
            result.status = AUDIT_STATUS_FAILED
            result.error = str(e)
            result.duration_ms = int((time.monotonic() - start) * 1000)
            self.state = RestoreState.FAILED

            logger.error(f"✗ Restore of {filename} failed: {e}. "
                         f"Safety backup: {result.safety_backup_filename}")
            self._notify(progress, RESTORE_STEP_FAILED,
                         f"Restore failed, recover manually from safety backup "
                         f"{result.safety_backup_filename}", percent)
            self.audit.record(
                AUDIT_ACTION_RESTORE, filename, actor, AUDIT_STATUS_FAILED,
                client_ip, user_agent,
                safety_backup_filename=result.safety_backup_filename,
                duration_ms=result.duration_ms, error=result.error,
            )
            raise RestoreFailedException(result, e) from e

        # Step 3: done
        result.duration_ms = int((time.monotonic() - start) * 1000)
        self.state = RestoreState.COMPLETED
        self._step(progress, RESTORE_STEP_COMPLETE, "Database restored successfully!")
        logger.info(f"✓ Restored {filename}: {result.tables_restored} tables in {result.duration_ms}ms")
        self.audit.record(
            AUDIT_ACTION_RESTORE, filename, actor, AUDIT_STATUS_SUCCESS,
            client_ip, user_agent,
            safety_backup_filename=result.safety_backup_filename,
            tables_restored=result.tables_restored, duration_ms=result.duration_ms,
        )
        return result
