from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from datetime import datetime

from portal_backup.infrastructure.database import Base


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, index=True)
    setting_key = Column(String, nullable=False, unique=True, index=True)  # e.g. "BACKUP_SCHEDULE_TIME"
    setting_value = Column(String, nullable=True)  # Stored as text, parsed by the reader
    is_active = Column(Boolean, default=True)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class BackupAuditLog(Base):
    """Append-only record of every mutating backup action"""
    __tablename__ = "backup_audit_log"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String, nullable=False, index=True)  # create, restore, delete, download
    filename = Column(String, nullable=True, index=True)
    performed_by = Column(String, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    status = Column(String, nullable=False, default="success")  # success, failed, in_progress
    details = Column(JSON, nullable=True)  # Sizes, durations, error text, safety backup filename
    created_at = Column(DateTime, default=datetime.now, index=True)
