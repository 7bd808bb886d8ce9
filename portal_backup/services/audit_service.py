"""
Audit log for backup actions.

Writes are best effort: a failed insert is logged and swallowed so the
backup, restore or delete that triggered it is never blocked.
"""
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from portal_backup.constants import AUDIT_QUERY_DEFAULT_LIMIT, AUDIT_QUERY_MAX_LIMIT
from portal_backup.exceptions import AuditWriteException
from portal_backup.models import BackupAuditLog
from portal_backup.repositories.audit_repository import AuditRepository
from portal_backup.schemas import AuditEntry

logger = logging.getLogger("portal_backup.audit")


class AuditLog:
    """Append-only audit trail stored in the backup_audit_log table"""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory
        self.repo = AuditRepository()

    def append(self, entry: AuditEntry) -> None:
        """Insert one audit row. Never raises."""
        try:
            row = BackupAuditLog(
                action=entry.action,
                filename=entry.filename,
                performed_by=entry.actor,
                ip_address=entry.client_ip,
                user_agent=entry.user_agent,
                status=entry.status,
                details=entry.metadata or None,
            )
            if entry.timestamp is not None:
                row.created_at = entry.timestamp

            db = self.session_factory()
            try:
                self.repo.create(db, row)
            finally:
                db.close()
        except Exception as e:
            error = AuditWriteException(entry.action, str(e))
            logger.error(f"{error} (filename={entry.filename}, status={entry.status})")

    def record(self, action: str, filename: Optional[str], actor: str, status: str,
               client_ip: Optional[str] = None, user_agent: Optional[str] = None,
               **metadata) -> None:
        """Shortcut building an AuditEntry from keyword metadata"""
        self.append(AuditEntry(
            action=action,
            filename=filename,
            actor=actor,
            client_ip=client_ip,
            user_agent=user_agent,
            status=status,
            metadata={k: v for k, v in metadata.items() if v is not None},
        ))

    def query(self, action: Optional[str] = None, filename: Optional[str] = None,
              status: Optional[str] = None,
              limit: int = AUDIT_QUERY_DEFAULT_LIMIT) -> List[AuditEntry]:
        """Get audit entries newest first"""
        limit = max(1, min(limit, AUDIT_QUERY_MAX_LIMIT))
        db = self.session_factory()
        try:
            rows = self.repo.query(db, limit, action=action, filename=filename, status=status)
            return [
                AuditEntry(
                    action=row.action,
                    filename=row.filename,
                    actor=row.performed_by,
                    client_ip=row.ip_address,
                    user_agent=row.user_agent,
                    status=row.status,
                    metadata=row.details or {},
                    timestamp=row.created_at,
                )
                for row in rows
            ]
        finally:
            db.close()
