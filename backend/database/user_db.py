"""
用户数据库管理器
提供用户的 CRUD 操作
"""

from typing import Optional, Dict, Any
from sqlalchemy import desc, or_
from sqlalchemy.exc import IntegrityError
import logging

from .models import User, AliyunDriveConfig, init_db, get_db_session

logger = logging.getLogger(__name__)


class UserDatabase:
    """用户数据库管理器"""

    def __init__(self):
        init_db()

    def create_user(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        创建新用户

        Args:
            user_data: 包含 email, username, password_hash 的字典

        Returns:
            用户信息字典（含 password_hash）
        """
        with get_db_session() as db:
            user = User(
                email=user_data["email"],
                username=user_data["username"],
                password_hash=user_data["password_hash"],
                status=user_data.get("status", "confirmation_pending"),
            )
            db.add(user)
            try:
                db.flush()
            except IntegrityError as e:
                raise ValueError("User with this email or username already exists") from e

            logger.info(f"Created user: {user.id}")
            return self._user_to_dict(user)

    def exists(self, email: Optional[str] = None, username: Optional[str] = None, exclude_id: Optional[str] = None) -> bool:
        """检查邮箱或用户名是否已被占用"""
        conditions = []
        if email:
            conditions.append(User.email == email)
        if username:
            conditions.append(User.username == username)
        if not conditions:
            return False

        with get_db_session() as db:
            query = db.query(User).filter(or_(*conditions))
            if exclude_id:
                query = query.filter(User.id != exclude_id)
            return query.first() is not None

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as db:
            user = db.query(User).filter(User.id == user_id).first()
            return self._user_to_dict(user) if user else None

    def get_user_by_field(self, field: str, value: str) -> Optional[Dict[str, Any]]:
        """按 email 或 username 查询用户"""
        column = {"email": User.email, "username": User.username}[field]
        with get_db_session() as db:
            user = db.query(User).filter(column == value).first()
            return self._user_to_dict(user) if user else None

    def list_users(self, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        with get_db_session() as db:
            query = db.query(User)
            total = query.count()
            users = query.order_by(desc(User.created_at)).offset((page - 1) * page_size).limit(page_size).all()

            return {
                "users": [self._user_to_dict(u) for u in users],
                "total": total
            }

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        更新用户信息

        Returns:
            更新后的用户信息，用户不存在返回 None
        """
        with get_db_session() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                logger.warning(f"User not found: {user_id}")
                return None

            for key, value in updates.items():
                if hasattr(user, key):
                    setattr(user, key, value)

            try:
                db.flush()
            except IntegrityError as e:
                raise ValueError("User with this email or username already exists") from e
            logger.info(f"Updated user: {user_id}")
            return self._user_to_dict(user)

    def delete_user(self, user_id: str) -> bool:
        with get_db_session() as db:
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                logger.warning(f"User not found: {user_id}")
                return False

            # 级联删除阿里云盘配置
            db.query(AliyunDriveConfig).filter(AliyunDriveConfig.user_id == user_id).delete()
            db.delete(user)
            logger.info(f"Deleted user: {user_id}")
            return True

    def _user_to_dict(self, user: User) -> Dict[str, Any]:
        return {
            "id": user.id,
            "email": user.email,
            "username": user.username,
            "password_hash": user.password_hash,
            "status": user.status,
            "subscription_plan": user.subscription_plan,
            "content_quota": user.content_quota,
            "created_at": user.created_at,
            "updated_at": user.updated_at,
        }
