"""
后端配置文件
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# 项目根目录
BASE_DIR = Path(__file__).parent.parent

# 加载 .env（项目根目录或 backend 目录）
load_dotenv(BASE_DIR / ".env", override=False)
load_dotenv(BASE_DIR / "backend" / ".env", override=False)


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


# 存储配置
STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(BASE_DIR / "storage")))
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(STORAGE_DIR / "uploads")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(STORAGE_DIR / "outputs")))
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(STORAGE_DIR / "tmp")))
THUMBNAIL_DIR = Path(os.getenv("THUMBNAIL_DIR", str(UPLOAD_DIR / "thumbnails")))

# 创建目录
for directory in [STORAGE_DIR, UPLOAD_DIR, OUTPUT_DIR, TEMP_DIR, THUMBNAIL_DIR]:
    directory.mkdir(parents=True, exist_ok=True)

# 文件配置
MAX_FILE_SIZE = _int_env("MAX_FILE_SIZE", 500 * 1024 * 1024)  # 500MB
ALLOWED_MIME_TYPES = [
    t.strip()
    for t in os.getenv("ALLOWED_MIME_TYPES", "image/*,video/*,audio/*,text/*").split(",")
    if t.strip()
]

# WebDAV（阿里云盘）配置
WEBDAV_TIMEOUT = _int_env("WEBDAV_TIMEOUT", 30_000)  # 毫秒
WEBDAV_TIMEOUT_MIN = 1_000
WEBDAV_TIMEOUT_MAX = 300_000
WEBDAV_USER_AGENT = os.getenv("WEBDAV_USER_AGENT", "Titan-Material-Platform/1.0")

# 敏感数据加密密钥（WebDAV 密码等）
ENCRYPTION_KEY = os.getenv("ENCRYPTION_KEY", "")

# 任务配置
MAX_CONCURRENT_JOBS = min(max(_int_env("MAX_CONCURRENT_JOBS", 3), 1), 10)
DEFAULT_BATCH_CONCURRENCY = 3
JOB_MAX_ATTEMPTS = _int_env("JOB_MAX_ATTEMPTS", 3)
JOB_BACKOFF_SECONDS = float(os.getenv("JOB_BACKOFF_SECONDS", "2.0"))

# 媒体处理
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
# 默认与 ffmpeg 同目录
FFPROBE_PATH = os.getenv(
    "FFPROBE_PATH", str(Path(FFMPEG_PATH).with_name(Path(FFMPEG_PATH).name.replace("ffmpeg", "ffprobe")))
)
DEFAULT_VIDEO_RESOLUTION = os.getenv("DEFAULT_VIDEO_RESOLUTION", "1080x1920")
DEFAULT_VIDEO_FPS = _int_env("DEFAULT_VIDEO_FPS", 30)
DEFAULT_AUDIO_BITRATE = os.getenv("DEFAULT_AUDIO_BITRATE", "192k")
DEFAULT_IMAGE_DISPLAY_DURATION = 30  # 秒

# AI 图片生成
POLLINATIONS_BASE_URL = os.getenv("POLLINATIONS_BASE_URL", "https://image.pollinations.ai/prompt")
MAX_PROMPT_LENGTH = 2000
MAX_BATCH_PROMPTS = 10

# CORS
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001").split(",")
    if o.strip()
]

# 日志配置
LOG_DIR = STORAGE_DIR / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# 数据库配置
DB_DIR = STORAGE_DIR / "database"
DB_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DB_DIR / 'app.db'}")

# 环境变量
DEBUG = os.getenv("DEBUG", "False").lower() == "true"

APP_NAME = "Titan 素材平台 API"
APP_VERSION = "1.0.0"
