from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.responses import FileResponse, JSONResponse
from typing import Optional
import logging
import os
from pathlib import Path

from portal_backup.infrastructure.database import engine, SessionLocal, Base
from portal_backup import models  # noqa: F401  Register models with Base
from portal_backup.auth import AdminContext, build_admin_dependency
from portal_backup.config import load_backup_config, load_database_config
from portal_backup.constants import (
    BACKUP_TYPE_MANUAL,
    DEFAULT_LOG_DIRECTORY_DEV,
    DEFAULT_LOG_DIRECTORY_PROD,
    DEFAULT_PREVIEW_LINES,
)
from portal_backup.exceptions import (
    BackupNotFoundException,
    ExecutionException,
    RestoreConflictException,
    RestoreFailedException,
    ValidationException,
)
from portal_backup.schemas import (
    BackupInfoResponse,
    BackupListResponse,
    BackupRecord,
    RestoreRequest,
    RestoreResult,
    SchedulerActionRequest,
    SchedulerStatus,
)
from portal_backup.services.audit_service import AuditLog
from portal_backup.services.backup_service import BackupStore
from portal_backup.services.dump_invoker import DumpInvoker
from portal_backup.services.restore_service import RestoreEngine
from portal_backup.services.scheduler_service import BackupScheduler

LOG_DIR = os.getenv("PORTAL_BACKUP_LOG_DIR", DEFAULT_LOG_DIRECTORY_PROD)
LOG_FILE = os.getenv("PORTAL_BACKUP_LOG_FILE", "backup.log")

# Create log directory if it doesn't exist (for development)
try:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE
    log_path.touch(exist_ok=True)
except PermissionError:
    # Fallback to local directory if no permissions for /var/log
    LOG_DIR = DEFAULT_LOG_DIRECTORY_DEV
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    log_path = Path(LOG_DIR) / LOG_FILE

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_path),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger("portal_backup")

# Create audit/settings tables
Base.metadata.create_all(bind=engine)

# Process-wide components
backup_config = load_backup_config()
audit_log = AuditLog(SessionLocal)
dump_invoker = DumpInvoker(load_database_config(), backup_config)
backup_store = BackupStore(backup_config, dump_invoker, audit_log)
restore_engine = RestoreEngine(backup_store, dump_invoker, audit_log)
backup_scheduler = BackupScheduler(backup_store, SessionLocal, timezone=backup_config.scheduler_timezone)
require_admin = build_admin_dependency(backup_config.api_key)

app = FastAPI(
    title="Portal Backup API",
    description="Backup, restore and scheduled backups for the portal database",
    version="1.0.0"
)


@app.on_event("startup")
async def startup_event():
    logger.info(f"Portal Backup API started. Logging to: {log_path}")
    backup_scheduler.init()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Portal Backup API")
    backup_scheduler.shutdown()


# Exception mapping
@app.exception_handler(ValidationException)
async def validation_exception_handler(request: Request, exc: ValidationException):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                        content={"success": False, "error": str(exc)})


@app.exception_handler(BackupNotFoundException)
async def not_found_exception_handler(request: Request, exc: BackupNotFoundException):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND,
                        content={"success": False, "error": "Backup not found"})


@app.exception_handler(RestoreConflictException)
async def conflict_exception_handler(request: Request, exc: RestoreConflictException):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT,
                        content={"success": False, "error": str(exc)})


@app.exception_handler(ExecutionException)
async def execution_exception_handler(request: Request, exc: ExecutionException):
    content = {"success": False, "error": str(exc)}
    if isinstance(exc, RestoreFailedException):
        safety_backup = exc.result.safety_backup_filename
        content["safety_backup"] = safety_backup
        content["message"] = (
            f"Restore failed. A safety backup was created: {safety_backup}"
            if safety_backup else "Restore failed. Database may need manual recovery."
        )
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Health check (no auth required)
@app.get("/")
async def root():
    return {"message": "Portal Backup API", "status": "active"}


# ===== BACKUP ENDPOINTS =====

@app.get("/api/admin/backups", response_model=BackupListResponse, dependencies=[Depends(require_admin)])
def list_backups_endpoint():
    """Get all backups (newest first) with directory stats"""
    return BackupListResponse(backups=backup_store.list(), stats=backup_store.dir_stats())


@app.post("/api/admin/backups", response_model=BackupRecord, status_code=status.HTTP_201_CREATED)
def create_backup_endpoint(admin: AdminContext = Depends(require_admin)):
    """Create a manual backup"""
    return backup_store.create(BACKUP_TYPE_MANUAL, **admin.audit_fields())


@app.get("/api/admin/backups/scheduler", response_model=SchedulerStatus, dependencies=[Depends(require_admin)])
def scheduler_status_endpoint():
    return backup_scheduler.status()


@app.post("/api/admin/backups/scheduler", response_model=SchedulerStatus, dependencies=[Depends(require_admin)])
def scheduler_action_endpoint(body: Optional[SchedulerActionRequest] = None):
    """Restart the scheduler after schedule settings changed"""
    action = body.action if body else "restart"
    if action == "restart":
        backup_scheduler.restart()
    elif action == "init":
        backup_scheduler.init()
    elif action != "status":
        raise ValidationException("action", f"invalid action: {action}")
    return backup_scheduler.status()


@app.get("/api/admin/backups/audit", dependencies=[Depends(require_admin)])
def audit_log_endpoint(action: Optional[str] = None, filename: Optional[str] = None,
                       status_filter: Optional[str] = Query(None, alias="status"), limit: int = 50):
    """Get recent backup audit entries (newest first)"""
    return audit_log.query(action=action, filename=filename, status=status_filter, limit=limit)


@app.get("/api/admin/backups/{filename}", response_model=BackupInfoResponse,
         dependencies=[Depends(require_admin)])
def backup_info_endpoint(filename: str, preview: bool = False, lines: int = DEFAULT_PREVIEW_LINES):
    record = backup_store.info(filename)
    response = BackupInfoResponse(**record.model_dump())
    if preview:
        response.preview = backup_store.preview(filename, lines)
    return response


@app.delete("/api/admin/backups/{filename}", status_code=status.HTTP_204_NO_CONTENT)
def delete_backup_endpoint(filename: str, admin: AdminContext = Depends(require_admin)):
    backup_store.delete(filename, **admin.audit_fields())


@app.get("/api/admin/backups/{filename}/download")
def download_backup_endpoint(filename: str, admin: AdminContext = Depends(require_admin)):
    path = backup_store.download_path(filename, **admin.audit_fields())
    return FileResponse(path=path, filename=path.name, media_type="application/sql")


@app.post("/api/admin/backups/{filename}/restore", response_model=RestoreResult)
def restore_backup_endpoint(filename: str, body: RestoreRequest,
                            admin: AdminContext = Depends(require_admin)):
    """
    Restore database from a backup file.

    Body must contain confirm=true and confirmation_text="RESTORE DATABASE".
    """
    return restore_engine.restore(
        filename,
        confirm=body.confirm,
        confirmation_text=body.confirmation_text,
        **admin.audit_fields(),
    )
