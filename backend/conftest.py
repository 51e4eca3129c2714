"""
pytest 公共配置

在导入任何后端模块之前，把数据库与存储目录指向临时目录
"""

import os
import sys
import tempfile
import uuid
from pathlib import Path

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

_test_root = Path(tempfile.mkdtemp(prefix="titan-test-"))
os.environ["STORAGE_DIR"] = str(_test_root)
os.environ["DATABASE_URL"] = f"sqlite:///{_test_root / 'test.db'}"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["JOB_BACKOFF_SECONDS"] = "0"
os.environ["FFMPEG_PATH"] = str(_test_root / "no-ffmpeg")

import pytest


@pytest.fixture(scope="session", autouse=True)
def database():
    from database.models import init_db
    init_db()


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient
    from main import app

    return TestClient(app)


@pytest.fixture
def user():
    """每个测试一个新用户"""
    from models.schemas import UserCreate
    from services.user_service import get_user_service

    suffix = uuid.uuid4().hex[:8]
    return get_user_service().create_user(
        UserCreate(email=f"user-{suffix}@example.com", username=f"user-{suffix}", password="password123")
    )


@pytest.fixture
def headers(user):
    return {"X-User-Id": user["id"]}
