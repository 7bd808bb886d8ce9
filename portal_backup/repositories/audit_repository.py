"""
Audit repository - Data access layer for BackupAuditLog.
Insert and read only: audit rows are never updated or deleted.
"""
from typing import List, Optional
from sqlalchemy.orm import Session

from portal_backup.models import BackupAuditLog


class AuditRepository:
    """Repository for BackupAuditLog data access"""

    @staticmethod
    def create(db: Session, entry: BackupAuditLog) -> BackupAuditLog:
        """Insert a new audit row"""
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry

    @staticmethod
    def query(
        db: Session,
        limit: int,
        action: Optional[str] = None,
        filename: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[BackupAuditLog]:
        """Get audit rows newest first with optional filters"""
        query = db.query(BackupAuditLog)
        if action:
            query = query.filter(BackupAuditLog.action == action)
        if filename:
            query = query.filter(BackupAuditLog.filename == filename)
        if status:
            query = query.filter(BackupAuditLog.status == status)
        return query.order_by(
            BackupAuditLog.created_at.desc(), BackupAuditLog.id.desc()
        ).limit(limit).all()
