"""
阿里云盘配置数据库管理器
"""

from typing import Optional, Dict, Any
from datetime import datetime
import logging

from sqlalchemy.exc import IntegrityError

from .models import AliyunDriveConfig, init_db, get_db_session

logger = logging.getLogger(__name__)


class DriveConfigDatabase:
    """WebDAV 配置数据库管理器"""

    def __init__(self):
        init_db()

    def create_config(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        with get_db_session() as db:
            config = AliyunDriveConfig(
                user_id=config_data["user_id"],
                webdav_url=config_data["webdav_url"],
                username=config_data["username"],
                encrypted_password=config_data["encrypted_password"],
                display_name=config_data.get("display_name"),
                timeout=config_data["timeout"],
                base_path=config_data.get("base_path") or "/",
            )
            db.add(config)
            try:
                db.flush()
            except IntegrityError as e:
                raise ValueError("Aliyun Drive config already exists for this user") from e

            logger.info(f"Created aliyun drive config {config.id} for user {config.user_id}")
            return self._config_to_dict(config)

    def get_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as db:
            config = db.query(AliyunDriveConfig).filter(AliyunDriveConfig.user_id == user_id).first()
            return self._config_to_dict(config) if config else None

    def update_config(self, config_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with get_db_session() as db:
            config = db.query(AliyunDriveConfig).filter(AliyunDriveConfig.id == config_id).first()
            if not config:
                logger.warning(f"Aliyun drive config not found: {config_id}")
                return None

            for key, value in updates.items():
                if hasattr(config, key):
                    setattr(config, key, value)

            config.updated_at = datetime.now()
            db.flush()
            return self._config_to_dict(config)

    def touch_last_sync(self, config_id: str) -> Optional[datetime]:
        """刷新最后同步时间"""
        now = datetime.now()
        updated = self.update_config(config_id, {"last_sync_at": now})
        return now if updated else None

    def delete_config(self, config_id: str) -> bool:
        with get_db_session() as db:
            config = db.query(AliyunDriveConfig).filter(AliyunDriveConfig.id == config_id).first()
            if not config:
                return False

            db.delete(config)
            logger.info(f"Deleted aliyun drive config: {config_id}")
            return True

    def _config_to_dict(self, config: AliyunDriveConfig) -> Dict[str, Any]:
        return {
            "id": config.id,
            "user_id": config.user_id,
            "webdav_url": config.webdav_url,
            "username": config.username,
            "encrypted_password": config.encrypted_password,
            "display_name": config.display_name,
            "timeout": config.timeout,
            "base_path": config.base_path,
            "is_active": config.is_active,
            "last_sync_at": config.last_sync_at,
            "created_at": config.created_at,
            "updated_at": config.updated_at,
        }
