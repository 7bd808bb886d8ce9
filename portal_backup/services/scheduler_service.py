"""
Background scheduler for automatic database backups.
Handles:
- Recurring scheduled backups (daily, weekly, monthly or every N hours)
- Retention cleanup of old backups after each scheduled run
- Re-arming after settings changes without restarting the process

The schedule is read from the system_settings table. There is at most one
armed backup job at any time.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal_backup.constants import (
    AUDIT_STATUS_FAILED,
    AUDIT_STATUS_SUCCESS,
    BACKUP_TYPE_PRE_RESTORE,
    BACKUP_TYPE_SCHEDULED,
    DEFAULT_SCHEDULE_TIME,
    DEFAULT_SCHEDULER_TIMEZONE,
    SCHEDULED_BACKUP_JOB_ID,
    SCHEDULER_ACTOR,
    SCHEDULE_DAILY,
    SCHEDULE_INTERVAL,
    SCHEDULE_MONTHLY,
    SCHEDULE_TYPES,
    SCHEDULE_WEEKLY,
    SETTING_RETENTION_COUNT,
    SETTING_RETENTION_DAYS,
    SETTING_RETENTION_ENABLED,
    SETTING_SCHEDULE_DAY,
    SETTING_SCHEDULE_ENABLED,
    SETTING_SCHEDULE_INTERVAL_HOURS,
    SETTING_SCHEDULE_TIME,
    SETTING_SCHEDULE_TYPE,
)
from portal_backup.exceptions import PortalBackupException
from portal_backup.repositories.settings_repository import SettingsRepository
from portal_backup.schemas import LastRunResult, ScheduleConfig, SchedulerStatus
from portal_backup.services.backup_service import BackupStore

logger = logging.getLogger("portal_backup.scheduler")

# Settings use 0 = Sunday
WEEKDAY_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


def _get_bool(db: Session, key: str, default: bool) -> bool:
    value = SettingsRepository.get_value(db, key, str(default).lower())
    return value.strip().lower() in ("true", "1")


def _get_int(db: Session, key: str, default: int) -> int:
    value = SettingsRepository.get_value(db, key, str(default))
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_schedule_time(time_str: Optional[str]) -> tuple[int, int]:
    """
    Parse "HH:MM" into (hour, minute).
    Falls back to 02:00 when the value is missing or out of range.
    """
    try:
        hour_str, minute_str = (time_str or "").split(":")
        hour, minute = int(hour_str), int(minute_str)
    except ValueError:
        logger.warning(f"Invalid backup schedule time {time_str!r}, using {DEFAULT_SCHEDULE_TIME}")
        return 2, 0

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        logger.warning(f"Backup schedule time {time_str!r} out of range, using {DEFAULT_SCHEDULE_TIME}")
        return 2, 0
    return hour, minute


def build_trigger(config: ScheduleConfig):
    """Build the APScheduler trigger for a schedule configuration"""
    if config.schedule_type not in SCHEDULE_TYPES:
        logger.warning(f"Unknown backup schedule type {config.schedule_type!r}, using daily at 02:00")
        return CronTrigger(hour=2, minute=0, timezone=config.timezone)

    if config.schedule_type == SCHEDULE_INTERVAL:
        return IntervalTrigger(hours=config.interval_hours, timezone=config.timezone)

    hour, minute = parse_schedule_time(config.schedule_time)

    if config.schedule_type == SCHEDULE_DAILY:
        return CronTrigger(hour=hour, minute=minute, timezone=config.timezone)

    if config.schedule_type == SCHEDULE_WEEKLY:
        day_of_week = WEEKDAY_NAMES[min(max(config.schedule_day, 0), 6)]
        return CronTrigger(day_of_week=day_of_week, hour=hour, minute=minute,
                           timezone=config.timezone)

    # Monthly, capped at 28 so every month has the day
    day_of_month = min(max(config.schedule_day, 1), 28)
    return CronTrigger(day=day_of_month, hour=hour, minute=minute, timezone=config.timezone)


class BackupScheduler:
    """Supervisor owning the single scheduled backup job"""

    def __init__(self, store: BackupStore, session_factory: Callable[[], Session],
                 timezone: str = DEFAULT_SCHEDULER_TIMEZONE,
                 scheduler: Optional[BackgroundScheduler] = None):
        self.store = store
        self.session_factory = session_factory
        self.timezone = timezone
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone)
        self._lock = threading.RLock()
        self._initialized = False
        self._job = None
        self._config: Optional[ScheduleConfig] = None
        self.last_run_result: Optional[LastRunResult] = None

    def load_config(self) -> ScheduleConfig:
        """Read the schedule from settings, falling back to defaults on errors"""
        db = self.session_factory()
        try:
            return ScheduleConfig(
                enabled=_get_bool(db, SETTING_SCHEDULE_ENABLED, False),
                schedule_type=SettingsRepository.get_value(db, SETTING_SCHEDULE_TYPE, SCHEDULE_DAILY),
                schedule_time=SettingsRepository.get_value(db, SETTING_SCHEDULE_TIME, DEFAULT_SCHEDULE_TIME),
                schedule_day=_get_int(db, SETTING_SCHEDULE_DAY, 0),
                interval_hours=max(1, _get_int(db, SETTING_SCHEDULE_INTERVAL_HOURS, 24)),
                timezone=self.timezone,
                retention_enabled=_get_bool(db, SETTING_RETENTION_ENABLED, True),
                retention_days=max(0, _get_int(db, SETTING_RETENTION_DAYS, 30)),
                retention_min_count=max(0, _get_int(db, SETTING_RETENTION_COUNT, 10)),
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to read backup schedule settings, using defaults: {e}")
            return ScheduleConfig(timezone=self.timezone)
        finally:
            db.close()

    def init(self) -> None:
        """Arm the scheduled backup job if enabled. No-op when already initialized."""
        with self._lock:
            if self._initialized:
                logger.info("Backup scheduler already initialized")
                return
            self._arm()

    def restart(self) -> None:
        """Tear down the current job, re-read settings and re-arm"""
        with self._lock:
            logger.info("Restarting backup scheduler")
            self._disarm()
            self._arm()

    def shutdown(self) -> None:
        """Remove the job and stop the background thread"""
        with self._lock:
            self._disarm()
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            logger.info("Backup scheduler stopped")

    def _arm(self) -> None:
        config = self.load_config()
        self._config = config

        if not config.enabled:
            logger.info("Scheduled backups are disabled")
            self._initialized = True
            return

        trigger = build_trigger(config)
        if not self._scheduler.running:
            self._scheduler.start()

        self._job = self._scheduler.add_job(
            self._run_scheduled_backup,
            trigger,
            id=SCHEDULED_BACKUP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._initialized = True
        logger.info(
            f">>> Backup scheduler armed: {config.schedule_type} at {config.schedule_time} "
            f"({trigger}) <<<"
        )

    def _disarm(self) -> None:
        if self._job is not None:
            try:
                self._scheduler.remove_job(SCHEDULED_BACKUP_JOB_ID)
            except JobLookupError:
                logger.warning("Scheduled backup job was already removed")
            self._job = None
        self._initialized = False

    def status(self) -> SchedulerStatus:
        with self._lock:
            next_run_at = None
            if self._job is not None:
                job = self._scheduler.get_job(SCHEDULED_BACKUP_JOB_ID)
                next_run_at = getattr(job, "next_run_time", None)

            return SchedulerStatus(
                initialized=self._initialized,
                running=self._job is not None,
                next_run_at=next_run_at,
                last_run_result=self.last_run_result,
                schedule=self._config,
            )

    def run_now(self) -> LastRunResult:
        """Execute one scheduled backup synchronously"""
        return self._run_scheduled_backup()

    def _run_scheduled_backup(self) -> LastRunResult:
        started_at = datetime.now()
        logger.info(f"[BackupScheduler] Starting scheduled backup at {started_at.isoformat()}")

        try:
            record = self.store.create(BACKUP_TYPE_SCHEDULED, actor=SCHEDULER_ACTOR)
        except PortalBackupException as e:
            logger.error(f"[BackupScheduler] Backup failed: {e}")
            return self._record_run(LastRunResult(
                status=AUDIT_STATUS_FAILED,
                started_at=started_at,
                finished_at=datetime.now(),
                error=str(e),
            ))

        with self._lock:
            config = self._config
        config = config or self.load_config()
        pruned = []
        if config.retention_enabled:
            pruned = self.apply_retention(config.retention_days, config.retention_min_count)
            if pruned:
                logger.info(f"[BackupScheduler] Cleaned up {len(pruned)} old backups")

        return self._record_run(LastRunResult(
            status=AUDIT_STATUS_SUCCESS,
            started_at=started_at,
            finished_at=datetime.now(),
            filename=record.filename,
            size_bytes=record.size_bytes,
            pruned=pruned,
        ))

    def _record_run(self, result: LastRunResult) -> LastRunResult:
        with self._lock:
            self.last_run_result = result
        return result

    def apply_retention(self, retention_days: int, min_count: int) -> List[str]:
        """
        Delete backups older than retention_days through the store.

        The newest min_count backups are always kept, and pre_restore
        safety backups are never pruned.
        """
        backups = self.store.list()
        if len(backups) <= min_count:
            return []

        cutoff = datetime.now() - timedelta(days=retention_days)
        deleted = []
        for record in backups[min_count:]:
            if record.backup_type == BACKUP_TYPE_PRE_RESTORE or record.created_at >= cutoff:
                continue
            try:
                self.store.delete(record.filename, actor=SCHEDULER_ACTOR)
            except PortalBackupException as e:
                logger.error(f"Failed to prune backup {record.filename}: {e}")
                continue
            deleted.append(record.filename)
        return deleted
