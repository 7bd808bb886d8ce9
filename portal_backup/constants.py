"""
Application constants for the backup subsystem.
"""

# Backup types
BACKUP_TYPE_MANUAL = "manual"
BACKUP_TYPE_SCHEDULED = "scheduled"
BACKUP_TYPE_PRE_RESTORE = "pre_restore"
BACKUP_TYPE_UNKNOWN = "unknown"  # Generic-pattern files only, never created

CREATABLE_BACKUP_TYPES = (
    BACKUP_TYPE_MANUAL,
    BACKUP_TYPE_SCHEDULED,
    BACKUP_TYPE_PRE_RESTORE,
)

# Audit actions
AUDIT_ACTION_CREATE = "create"
AUDIT_ACTION_RESTORE = "restore"
AUDIT_ACTION_DELETE = "delete"
AUDIT_ACTION_DOWNLOAD = "download"

# Audit statuses
AUDIT_STATUS_SUCCESS = "success"
AUDIT_STATUS_FAILED = "failed"
AUDIT_STATUS_IN_PROGRESS = "in_progress"

AUDIT_QUERY_DEFAULT_LIMIT = 50
AUDIT_QUERY_MAX_LIMIT = 500

# Restore confirmation
RESTORE_CONFIRMATION_PHRASE = "RESTORE DATABASE"

# Restore progress steps: (identifier, percent)
RESTORE_STEP_VALIDATE = "validate"
RESTORE_STEP_SAFETY_BACKUP = "safety-backup"
RESTORE_STEP_DROP_SCHEMA = "drop-schema"
RESTORE_STEP_LOAD_SCHEMA = "load-schema"
RESTORE_STEP_LOAD_DATA = "load-data"
RESTORE_STEP_VERIFY = "verify"
RESTORE_STEP_COMPLETE = "complete"
RESTORE_STEP_FAILED = "failed"

RESTORE_STEP_PERCENT = {
    RESTORE_STEP_VALIDATE: 0,
    RESTORE_STEP_SAFETY_BACKUP: 10,
    RESTORE_STEP_DROP_SCHEMA: 40,
    RESTORE_STEP_LOAD_SCHEMA: 50,
    RESTORE_STEP_LOAD_DATA: 60,
    RESTORE_STEP_VERIFY: 90,
    RESTORE_STEP_COMPLETE: 100,
}

# Preview
DEFAULT_PREVIEW_LINES = 50

# Size units for human-readable formatting (base 1024)
SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB"]

# Timeouts (seconds)
DEFAULT_DUMP_TIMEOUT_SECONDS = 300
DEFAULT_RESTORE_TIMEOUT_SECONDS = 600

# Scheduler
SCHEDULED_BACKUP_JOB_ID = "scheduled_backup"
SCHEDULER_ACTOR = "scheduler"

SCHEDULE_DAILY = "daily"
SCHEDULE_WEEKLY = "weekly"
SCHEDULE_MONTHLY = "monthly"
SCHEDULE_INTERVAL = "interval"
SCHEDULE_TYPES = (SCHEDULE_DAILY, SCHEDULE_WEEKLY, SCHEDULE_MONTHLY, SCHEDULE_INTERVAL)

DEFAULT_SCHEDULE_TIME = "02:00"
DEFAULT_SCHEDULER_TIMEZONE = "America/Grenada"

# Settings keys (system_settings table)
SETTING_SCHEDULE_ENABLED = "BACKUP_SCHEDULE_ENABLED"
SETTING_SCHEDULE_TYPE = "BACKUP_SCHEDULE_TYPE"
SETTING_SCHEDULE_TIME = "BACKUP_SCHEDULE_TIME"
SETTING_SCHEDULE_DAY = "BACKUP_SCHEDULE_DAY"
SETTING_SCHEDULE_INTERVAL_HOURS = "BACKUP_SCHEDULE_INTERVAL_HOURS"
SETTING_RETENTION_ENABLED = "BACKUP_RETENTION_ENABLED"
SETTING_RETENTION_DAYS = "BACKUP_RETENTION_DAYS"
SETTING_RETENTION_COUNT = "BACKUP_RETENTION_COUNT"

# Logging
DEFAULT_LOG_DIRECTORY_PROD = "/var/log/portal-backup"
DEFAULT_LOG_DIRECTORY_DEV = "./logs"
