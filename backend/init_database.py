"""
初始化数据库
创建所有必要的表，可选地创建管理员用户
"""

import sys
from pathlib import Path

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from config import DATABASE_URL
from database.models import init_db
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_admin(email: str, username: str, password: str) -> bool:
    """创建已激活的管理员用户；已存在时跳过"""
    from models.schemas import UserCreate, UserStatus, UserUpdate
    from services.user_service import get_user_service

    user_service = get_user_service()
    if user_service.get_user_by_email(email) or user_service.get_user_by_username(username):
        logger.info(f"Admin user already exists: {username}")
        return False

    user = user_service.create_user(UserCreate(email=email, username=username, password=password))
    user_service.update_user(user["id"], UserUpdate(status=UserStatus.ACTIVE))
    logger.info(f"✓ Admin user created: {username} ({user['id']})")
    return True


def main(argv=None):
    """初始化数据库"""
    import argparse

    parser = argparse.ArgumentParser(description="初始化数据库表，并可选创建管理员用户")
    parser.add_argument("--admin-email", help="管理员邮箱")
    parser.add_argument("--admin-username", default="admin", help="管理员用户名（默认 admin）")
    parser.add_argument("--admin-password", help="管理员密码（8-72 个字符）")
    args = parser.parse_args(argv)

    logger.info("Initializing database...")
    logger.info(f"Database URL: {DATABASE_URL}")

    try:
        init_db()
        logger.info("✓ Database initialized successfully")

        from database.models import engine
        from sqlalchemy import inspect

        tables = inspect(engine).get_table_names()
        logger.info(f"✓ {len(tables)} tables:")
        for table in tables:
            logger.info(f"  - {table}")

        if args.admin_email and args.admin_password:
            create_admin(args.admin_email, args.admin_username, args.admin_password)

        return True

    except Exception as e:
        logger.error(f"✗ Failed to initialize database: {e}", exc_info=True)
        return False


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
