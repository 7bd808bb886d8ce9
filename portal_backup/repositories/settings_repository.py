"""
Settings repository - Data access layer for SystemSetting model.
Handles all database queries related to runtime settings.
"""
from typing import Optional
from sqlalchemy.orm import Session

from portal_backup.models import SystemSetting


class SettingsRepository:
    """Repository for SystemSetting data access"""

    @staticmethod
    def get_value(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Get an active setting value.

        Returns:
            Stored value, or default when the key is missing or inactive
        """
        setting = db.query(SystemSetting).filter(
            SystemSetting.setting_key == key,
            SystemSetting.is_active == True  # noqa: E712
        ).first()
        if not setting or setting.setting_value is None:
            return default
        return setting.setting_value

    @staticmethod
    def set_value(db: Session, key: str, value: str) -> SystemSetting:
        """
        Create or update a setting.

        Args:
            db: Database session
            key: Setting key
            value: Value stored as text

        Returns:
            Updated setting
        """
        setting = db.query(SystemSetting).filter(SystemSetting.setting_key == key).first()
        if not setting:
            setting = SystemSetting(setting_key=key)
            db.add(setting)
        setting.setting_value = value
        setting.is_active = True
        db.commit()
        db.refresh(setting)
        return setting
