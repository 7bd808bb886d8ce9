"""
Backup filename validation.

Every filename that reaches the filesystem or a subprocess passes through
is_valid_backup_filename first. The check is an allow-list: anything that
is not a plain ``<name>.sql`` basename is rejected.
"""
import re
from datetime import datetime
from typing import Optional, Tuple

from portal_backup.constants import BACKUP_TYPE_UNKNOWN, CREATABLE_BACKUP_TYPES

VALID_FILENAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+\.sql")

# <subject>_backup_<YYYYMMDD>_<HHMMSS>_<type>.sql
CANONICAL_FILENAME_PATTERN = re.compile(
    r"(?P<subject>[A-Za-z0-9-]+)_backup_(?P<date>\d{8})_(?P<time>\d{6})"
    r"(?:_(?P<type>[a-z_]+))?\.sql"
)

FORBIDDEN_SUBSTRINGS = ("/", "\\", "..", ";", "|", "`", "$", "&", "<", ">")


def is_valid_backup_filename(filename) -> bool:
    """
    Check that a filename is a safe backup basename.

    Rejects path separators, parent references, whitespace, shell
    metacharacters, double extensions and anything but ``.sql``.
    """
    if not isinstance(filename, str) or not filename:
        return False

    if any(token in filename for token in FORBIDDEN_SUBSTRINGS):
        return False

    if any(ch.isspace() for ch in filename):
        return False

    if filename.count(".") != 1:
        return False

    return VALID_FILENAME_PATTERN.fullmatch(filename) is not None


def parse_backup_filename(filename: str) -> Optional[Tuple[datetime, str]]:
    """
    Extract (created_at, backup_type) from a canonical backup filename.

    Filenames without a type suffix, or with a suffix we do not create,
    are reported as "unknown". Returns None for non-canonical names.
    """
    match = CANONICAL_FILENAME_PATTERN.fullmatch(filename)
    if not match:
        return None

    try:
        created_at = datetime.strptime(match.group("date") + match.group("time"), "%Y%m%d%H%M%S")
    except ValueError:
        return None

    backup_type = match.group("type")
    if backup_type not in CREATABLE_BACKUP_TYPES:
        backup_type = BACKUP_TYPE_UNKNOWN

    return created_at, backup_type


def build_backup_filename(subject: str, backup_type: str, timestamp: datetime) -> str:
    """Generate the canonical filename for a new backup"""
    return f"{subject}_backup_{timestamp.strftime('%Y%m%d_%H%M%S')}_{backup_type}.sql"
