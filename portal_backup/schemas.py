from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Any, Dict


# Backup schemas
class BackupRecord(BaseModel):
    filename: str
    created_at: datetime
    backup_type: str = "manual"  # manual, scheduled, pre_restore, unknown
    size_bytes: int = Field(default=0, ge=0)
    size_formatted: str = "0 Bytes"


class BackupInfoResponse(BackupRecord):
    preview: Optional[str] = None


class DirStats(BaseModel):
    count: int = 0
    total_size_bytes: int = 0
    total_size_formatted: str = "0 Bytes"


class BackupListResponse(BaseModel):
    backups: List[BackupRecord]
    stats: DirStats


# Audit schemas
class AuditEntry(BaseModel):
    action: str  # create, restore, delete, download
    filename: Optional[str] = None
    actor: str = "system"
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    status: str = "success"  # success, failed, in_progress
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None


# Restore schemas
class RestoreRequest(BaseModel):
    confirm: bool = False
    confirmation_text: str = ""


class RestoreResult(BaseModel):
    status: str = "success"  # success, failed
    tables_restored: int = 0
    duration_ms: int = 0
    safety_backup_filename: Optional[str] = None
    error: Optional[str] = None


# Scheduler schemas
class ScheduleConfig(BaseModel):
    enabled: bool = False
    schedule_type: str = "daily"  # daily, weekly, monthly, interval
    schedule_time: str = "02:00"  # HH:MM
    schedule_day: int = 0  # Weekday (0 = Sunday) or day of month
    interval_hours: int = Field(default=24, ge=1)
    timezone: str = "America/Grenada"

    # Retention
    retention_enabled: bool = True
    retention_days: int = Field(default=30, ge=0)
    retention_min_count: int = Field(default=10, ge=0)


class LastRunResult(BaseModel):
    status: str  # success, failed
    started_at: datetime
    finished_at: datetime
    filename: Optional[str] = None
    size_bytes: Optional[int] = None
    error: Optional[str] = None
    pruned: List[str] = Field(default_factory=list)


class SchedulerStatus(BaseModel):
    initialized: bool = False
    running: bool = False
    next_run_at: Optional[datetime] = None
    last_run_result: Optional[LastRunResult] = None
    schedule: Optional[ScheduleConfig] = None


class SchedulerActionRequest(BaseModel):
    action: str = "restart"  # restart, init, status
