"""
数据库模型定义
使用 SQLAlchemy ORM
"""

from sqlalchemy import (
    Column, String, Integer, Text, DateTime, JSON, Boolean, ForeignKey,
    CheckConstraint, create_engine, Index, event
)
from sqlalchemy.orm import declarative_base, sessionmaker
from contextlib import contextmanager
from datetime import datetime
import uuid
import logging

from config import DATABASE_URL, WEBDAV_TIMEOUT

logger = logging.getLogger(__name__)

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


# 创建引擎（SQLite 优化配置）
#   - check_same_thread: 允许多线程访问（任务执行器在工作线程中写库）
#   - timeout: 数据库锁定时的等待时间（秒）
_engine_kwargs = {"echo": False, "pool_pre_ping": True}
if DATABASE_URL.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
if ":memory:" not in DATABASE_URL:
    _engine_kwargs.update(pool_size=10, max_overflow=20)

engine = create_engine(DATABASE_URL, **_engine_kwargs)

if DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        # WAL 模式：允许并发读写
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


class User(Base):
    """用户表"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    username = Column(String(100), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="confirmation_pending")
    subscription_plan = Column(String(32), nullable=False, default="free")
    content_quota = Column(Integer, nullable=False, default=10)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)


class AliyunDriveConfig(Base):
    """阿里云盘 WebDAV 配置表（每个用户一条）"""
    __tablename__ = "aliyun_drive_configs"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    webdav_url = Column(String(500), nullable=False)
    username = Column(String(255), nullable=False)
    encrypted_password = Column(Text, nullable=False)  # EncryptedData 的 JSON 字符串
    display_name = Column(String(255), nullable=True)
    timeout = Column(Integer, nullable=False, default=WEBDAV_TIMEOUT)  # 毫秒
    base_path = Column(String(500), nullable=False, default="/")
    last_sync_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (
        CheckConstraint("timeout >= 1000 AND timeout <= 300000", name="check_webdav_timeout"),
    )


class Asset(Base):
    """素材表"""
    __tablename__ = "assets"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    original_name = Column(String(500), nullable=False)
    file_path = Column(Text, nullable=False)
    url = Column(Text, nullable=True)
    file_size = Column(Integer, nullable=False, default=0)
    mime_type = Column(String(128), nullable=False)
    asset_type = Column(String(64), nullable=False)
    upload_source = Column(String(32), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)
    thumbnail_path = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (
        Index("idx_asset_user_created_at", "user_id", "created_at"),
        Index("idx_asset_user_type", "user_id", "asset_type"),
    )


class ContentJob(Base):
    """内容生产任务表"""
    __tablename__ = "content_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False)
    project_id = Column(String(36), nullable=True)
    template_id = Column(String(36), nullable=False)
    job_type = Column(String(16), nullable=False)  # single, batch
    status = Column(String(16), nullable=False, default="queued")  # queued, processing, completed, failed
    input_assets = Column(JSON, nullable=False, default=list)
    output_path = Column(Text, nullable=True)
    progress = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    processing_time = Column(Integer, nullable=True)  # 毫秒
    attempts = Column(Integer, nullable=False, default=0)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)

    __table_args__ = (
        Index("idx_job_user_status", "user_id", "status"),
        Index("idx_job_status_created_at", "status", "created_at"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="check_job_progress"),
    )


class AIGeneratedImage(Base):
    """AI 生成图片表（与素材一对一）"""
    __tablename__ = "ai_generated_images"

    id = Column(String(36), primary_key=True, default=_new_id)
    asset_id = Column(String(36), ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, unique=True)
    prompt = Column(Text, nullable=False)
    seed = Column(Integer, nullable=False)
    generation_url = Column(Text, nullable=False)
    params = Column(JSON, nullable=True)
    generated_at = Column(DateTime, default=datetime.now, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)


def init_db():
    """初始化数据库，创建所有表"""
    Base.metadata.create_all(bind=engine)


@contextmanager
def get_db_session():
    """
    获取数据库会话的上下文管理器
    自动处理提交、回滚和关闭

    使用示例:
        with get_db_session() as db:
            job = db.query(ContentJob).filter(ContentJob.id == job_id).first()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
