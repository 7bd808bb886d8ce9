#!/usr/bin/env python3
"""
Operator command line for database backups.
Run on the server when the web interface is unavailable.

Usage:
    python3 backup_cli.py list
    python3 backup_cli.py create
    python3 backup_cli.py restore <filename>
"""

import sys

from portal_backup.config import load_backup_config, load_database_config
from portal_backup.constants import BACKUP_TYPE_MANUAL, RESTORE_CONFIRMATION_PHRASE
from portal_backup.exceptions import PortalBackupException, RestoreFailedException
from portal_backup import models  # noqa: F401  Register models with Base
from portal_backup.infrastructure.database import Base, SessionLocal, engine
from portal_backup.services.audit_service import AuditLog
from portal_backup.services.backup_service import BackupStore
from portal_backup.services.dump_invoker import DumpInvoker
from portal_backup.services.restore_service import RestoreEngine

ACTOR = "cli"


def build_components():
    Base.metadata.create_all(bind=engine)
    config = load_backup_config()
    audit = AuditLog(SessionLocal)
    invoker = DumpInvoker(load_database_config(), config)
    store = BackupStore(config, invoker, audit)
    return store, RestoreEngine(store, invoker, audit)


def print_progress(step, message, percent):
    print(f"  [{percent:3d}%] {step}: {message}")


def list_backups(store):
    backups = store.list()
    if not backups:
        print("No backups found")
        return
    for record in backups:
        print(f"{record.created_at:%Y-%m-%d %H:%M:%S}  {record.backup_type:<12} "
              f"{record.size_formatted:>10}  {record.filename}")
    stats = store.dir_stats()
    print(f"\n{stats.count} backups, {stats.total_size_formatted} total")


def restore_backup(engine_, filename):
    print(f"This will replace the live database with {filename}.")
    answer = input(f'Type "{RESTORE_CONFIRMATION_PHRASE}" to continue: ')
    try:
        result = engine_.restore(filename, confirm=True, confirmation_text=answer,
                                 progress=print_progress, actor=ACTOR)
    except RestoreFailedException as e:
        print(f"\n✗ Restore failed: {e.cause}")
        print(f"Safety backup: {e.result.safety_backup_filename}")
        sys.exit(1)
    print(f"\n✓ Restored {result.tables_restored} tables in {result.duration_ms}ms")
    print(f"Safety backup: {result.safety_backup_filename}")


if __name__ == "__main__":
    if len(sys.argv) < 2 or sys.argv[1] not in ("list", "create", "restore"):
        print(__doc__)
        sys.exit(1)

    store, restore_engine = build_components()
    command = sys.argv[1]

    try:
        if command == "list":
            list_backups(store)
        elif command == "create":
            record = store.create(BACKUP_TYPE_MANUAL, actor=ACTOR)
            print(f"✓ Backup created: {record.filename} ({record.size_formatted})")
        else:
            if len(sys.argv) < 3:
                print("Usage: python3 backup_cli.py restore <filename>")
                sys.exit(1)
            restore_backup(restore_engine, sys.argv[2])
    except PortalBackupException as e:
        print(f"\n✗ {e}")
        sys.exit(1)
