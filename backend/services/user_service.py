"""
用户服务
"""

from typing import Any, Dict, Optional
import logging

from database.user_db import UserDatabase
from database.drive_config_db import DriveConfigDatabase
from models.schemas import UserCreate, UserUpdate
from services.crypto_service import CryptoService

logger = logging.getLogger(__name__)


class UserService:
    """用户的创建、查询、更新与删除"""

    def __init__(self):
        self.db = UserDatabase()
        self.drive_configs = DriveConfigDatabase()

    def create_user(self, request: UserCreate) -> Dict[str, Any]:
        """
        创建用户，密码使用 bcrypt 哈希

        Raises:
            ValueError: 邮箱或用户名已存在
        """
        if self.db.exists(email=request.email, username=request.username):
            raise ValueError("User with this email or username already exists")

        user = self.db.create_user({
            "email": request.email,
            "username": request.username,
            "password_hash": CryptoService.hash_password(request.password),
        })
        logger.info(f"User created: {user['id']} ({user['username']})")
        return user

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_user(user_id)

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.db.get_user_by_field("email", email.lower())

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        return self.db.get_user_by_field("username", username)

    def list_users(self, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        return self.db.list_users(page, page_size)

    def update_user(self, user_id: str, request: UserUpdate) -> Optional[Dict[str, Any]]:
        """
        Raises:
            ValueError: 新邮箱或用户名已被其他用户使用
        """
        if not self.db.get_user(user_id):
            return None

        email = request.email.lower() if request.email else None
        if self.db.exists(email=email, username=request.username, exclude_id=user_id):
            raise ValueError("User with this email or username already exists")

        updates: Dict[str, Any] = {}
        if email:
            updates["email"] = email
        if request.username:
            updates["username"] = request.username
        if request.password:
            updates["password_hash"] = CryptoService.hash_password(request.password)
        if request.status is not None:
            updates["status"] = request.status.value

        return self.db.update_user(user_id, updates)

    def delete_user(self, user_id: str) -> bool:
        return self.db.delete_user(user_id)

    def check_aliyun_drive_config_status(self, user_id: str) -> bool:
        config = self.drive_configs.get_by_user(user_id)
        return bool(config and config["is_active"])

    @staticmethod
    def verify_password(user: Dict[str, Any], password: str) -> bool:
        return CryptoService.verify_password(password, user["password_hash"])

    @staticmethod
    def to_public(user: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in user.items() if k != "password_hash"}


# 全局实例
_user_service = None


def get_user_service() -> UserService:
    global _user_service
    if _user_service is None:
        _user_service = UserService()
    return _user_service
