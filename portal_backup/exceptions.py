"""
Custom exceptions for the backup subsystem.
Provides specific exception types so the HTTP layer can map failures to responses.
"""
from typing import Optional


class PortalBackupException(Exception):
    """Base exception for the backup subsystem"""
    pass


class ValidationException(PortalBackupException):
    """Raised when input is rejected before any side effect"""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"Validation error for {field}: {message}")


class BackupNotFoundException(PortalBackupException):
    """Raised when a referenced backup file does not exist"""
    def __init__(self, filename: str):
        self.filename = filename
        super().__init__(f"Backup {filename} not found")


class RestoreConflictException(PortalBackupException):
    """Raised when a restore is requested while another one is in flight"""
    def __init__(self):
        super().__init__("A database restore is already in progress")


class ExecutionException(PortalBackupException):
    """Raised when an external tool or filesystem operation fails"""
    def __init__(self, operation: str, details: str, stderr: Optional[str] = None):
        self.operation = operation
        self.details = details
        self.stderr = stderr
        super().__init__(f"{operation} failed: {details}")


class DumpTimeoutException(ExecutionException):
    """Raised when a dump/restore subprocess exceeds its timeout and is killed"""
    def __init__(self, operation: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(operation, f"timed out after {timeout_seconds} seconds")


class RestoreFailedException(ExecutionException):
    """
    Raised when a restore fails after it has started.

    Carries the RestoreResult so callers always learn the safety backup filename.
    """
    def __init__(self, result, cause: Exception):
        self.result = result
        self.cause = cause
        details = str(cause)
        if result.safety_backup_filename:
            details = f"{details} (safety backup: {result.safety_backup_filename})"
        super().__init__("Restore", details, getattr(cause, "stderr", None))


class AuditWriteException(PortalBackupException):
    """Raised internally when an audit entry cannot be stored. Never surfaced."""
    def __init__(self, action: str, details: str):
        self.action = action
        super().__init__(f"Audit write for {action} failed: {details}")
