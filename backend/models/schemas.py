"""
数据模型定义 - Pydantic schemas
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from config import WEBDAV_TIMEOUT_MAX, WEBDAV_TIMEOUT_MIN


class UserStatus(str, Enum):
    """用户状态"""
    CONFIRMATION_PENDING = "confirmation_pending"
    ACTIVE = "active"
    BLOCKED = "blocked"


class JobStatus(str, Enum):
    """内容任务状态"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """内容任务类型"""
    SINGLE = "single"
    BATCH = "batch"


class AssetType(str, Enum):
    """素材类型"""
    BACKGROUND_IMAGE = "background_image"
    BACKGROUND_VIDEO = "background_video"
    NARRATION_AUDIO = "narration_audio"
    BGM_AUDIO = "bgm_audio"
    TEXT_CONTENT = "text_content"
    SUBTITLE_FILE = "subtitle_file"
    WATERMARK_IMAGE = "watermark_image"

    # ASMR 专用
    ASMR_NATURAL_SOUND = "asmr_natural_sound"
    ASMR_WHITE_NOISE = "asmr_white_noise"
    ASMR_AMBIENT_SOUND = "asmr_ambient_sound"
    ASMR_VOICE_SAMPLE = "asmr_voice_sample"

    AI_GENERATED_IMAGE = "ai_generated_image"


class UploadSource(str, Enum):
    """素材来源"""
    LOCAL = "local"
    ALIYUN_DRIVE = "aliyun_drive"
    AI_GENERATED = "ai_generated"


class BatchOperationType(str, Enum):
    """素材批量操作类型"""
    DELETE = "delete"
    UPDATE_TAGS = "update_tags"
    UPDATE_TYPE = "update_type"


def _check_http_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("必须是 http(s) URL")
    return value.rstrip("/")


def _check_uuid(value: str) -> str:
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise ValueError(f"不是合法的 UUID: {value}")
    return str(value)


def _check_item_name(value: str) -> str:
    """单个文件或目录名，不含路径"""
    if value.strip() in ("", ".", "..") or "/" in value or "\\" in value:
        raise ValueError(f"不是合法的文件名: {value!r}")
    return value


# ===== 用户 =====

class UserCreate(BaseModel):
    """创建用户请求"""
    email: str = Field(..., min_length=3, max_length=255)
    username: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        if "@" not in v:
            raise ValueError("邮箱格式不正确")
        return v.lower()


class UserUpdate(BaseModel):
    """更新用户请求"""
    email: Optional[str] = None
    username: Optional[str] = Field(default=None, min_length=1, max_length=100)
    password: Optional[str] = Field(default=None, min_length=8, max_length=72)
    status: Optional[UserStatus] = None


class UserInfo(BaseModel):
    """用户信息（不含密码）"""
    id: str
    email: str
    username: str
    status: UserStatus
    subscription_plan: str
    content_quota: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserListResponse(BaseModel):
    users: List[UserInfo]
    total: int
    page: int
    page_size: int


# ===== 阿里云盘配置 =====

class CreateAliyunDriveConfigRequest(BaseModel):
    """创建 WebDAV 配置请求"""
    webdav_url: str
    username: str
    password: str
    display_name: Optional[str] = None
    timeout: Optional[int] = Field(default=None, ge=WEBDAV_TIMEOUT_MIN, le=WEBDAV_TIMEOUT_MAX, description="超时时间（毫秒）")
    base_path: Optional[str] = None

    @field_validator("webdav_url")
    @classmethod
    def check_url(cls, v):
        return _check_http_url(v)


class UpdateAliyunDriveConfigRequest(BaseModel):
    """更新 WebDAV 配置请求（仅更新提供的字段）"""
    webdav_url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    display_name: Optional[str] = None
    timeout: Optional[int] = Field(default=None, ge=WEBDAV_TIMEOUT_MIN, le=WEBDAV_TIMEOUT_MAX)
    base_path: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("webdav_url")
    @classmethod
    def check_url(cls, v):
        return _check_http_url(v) if v is not None else v


class AliyunDriveConfigInfo(BaseModel):
    """WebDAV 配置信息（不含密码）"""
    id: str
    webdav_url: str
    username: str
    display_name: Optional[str] = None
    timeout: int
    base_path: Optional[str] = None
    is_active: bool
    last_sync_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class SyncConfigResponse(BaseModel):
    message: str
    last_sync_at: Optional[datetime] = None


class ConnectionTestRequest(BaseModel):
    """测试 WebDAV 连接请求"""
    webdav_url: str
    username: str
    password: str
    timeout: Optional[int] = Field(default=None, ge=WEBDAV_TIMEOUT_MIN, le=WEBDAV_TIMEOUT_MAX)
    base_path: Optional[str] = None

    @field_validator("webdav_url")
    @classmethod
    def check_url(cls, v):
        return _check_http_url(v)


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    response_time: Optional[int] = None  # 毫秒
    error: Optional[str] = None


# ===== 阿里云盘文件操作 =====

class ListFilesQuery(BaseModel):
    """列出文件参数"""
    path: str = "/"
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)
    search: Optional[str] = None


class WebDavFile(BaseModel):
    name: str
    path: str
    is_directory: bool
    size: Optional[int] = None
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None


class ListFilesResponse(BaseModel):
    files: List[WebDavFile]
    path: str
    total: int
    has_more: bool


class UploadFileRequest(BaseModel):
    file_name: str
    path: str = "/"
    overwrite: bool = False

    @field_validator("file_name")
    @classmethod
    def check_file_name(cls, v):
        return _check_item_name(v)


class DownloadFileQuery(BaseModel):
    file_path: str
    download_name: Optional[str] = None


class CreateDirectoryRequest(BaseModel):
    path: str = "/"
    directory_name: str = Field(..., min_length=1)

    @field_validator("directory_name")
    @classmethod
    def check_directory_name(cls, v):
        return _check_item_name(v)


class DeleteItemsRequest(BaseModel):
    paths: List[str] = Field(..., min_length=1)


class MoveItemRequest(BaseModel):
    source_path: str
    target_path: str
    overwrite: bool = False


class CopyItemRequest(MoveItemRequest):
    pass


class FileOperationResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    path: Optional[str] = None
    error: Optional[str] = None
    failed: Optional[int] = None


# ===== 素材 =====

class AssetSearchQuery(BaseModel):
    """素材搜索参数"""
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    asset_type: Optional[AssetType] = None
    tags: Optional[List[str]] = None
    search_keyword: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = Field(default="DESC", pattern="^(ASC|DESC|asc|desc)$")


class UpdateAssetRequest(BaseModel):
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    asset_type: Optional[AssetType] = None


class BatchOperationRequest(BaseModel):
    asset_ids: List[str] = Field(..., min_length=1)
    operation: BatchOperationType
    tags: Optional[List[str]] = None
    asset_type: Optional[AssetType] = None


class BatchOperationResponse(BaseModel):
    success: int
    failed: int


class ImportFromDriveRequest(BaseModel):
    """从阿里云盘导入素材"""
    file_path: str
    asset_type: AssetType
    tags: Optional[List[str]] = None
    description: Optional[str] = None


class AssetInfo(BaseModel):
    id: str
    user_id: str
    file_name: str
    original_name: str
    file_path: str
    url: Optional[str] = None
    file_size: int
    mime_type: str
    asset_type: AssetType
    upload_source: UploadSource
    tags: List[str] = []
    description: Optional[str] = None
    metadata: Dict[str, Any] = {}
    thumbnail_path: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AssetSearchResponse(BaseModel):
    data: List[AssetInfo]
    total: int
    page: int
    page_size: int
    total_pages: int


# ===== 内容任务 =====

class AssetMapping(BaseModel):
    """输入素材映射"""
    asset_id: str
    slot_name: str = Field(..., min_length=1)
    parameters: Optional[Dict[str, Any]] = None

    @field_validator("asset_id")
    @classmethod
    def check_asset_id(cls, v):
        return _check_uuid(v)


class CreateContentJobRequest(BaseModel):
    """创建单个内容任务"""
    project_id: Optional[str] = None
    template_id: str
    input_assets: List[AssetMapping] = Field(default_factory=list)

    @field_validator("template_id")
    @classmethod
    def check_template_id(cls, v):
        return _check_uuid(v)

    @field_validator("project_id")
    @classmethod
    def check_project_id(cls, v):
        return _check_uuid(v) if v is not None else v


class CreateBatchJobRequest(BaseModel):
    """批量创建内容任务"""
    jobs: List[CreateContentJobRequest] = Field(..., min_length=1)
    concurrency: int = Field(default=3, ge=1, le=10, description="并发数量限制")


class ContentJobInfo(BaseModel):
    id: str
    user_id: str
    project_id: Optional[str] = None
    template_id: str
    job_type: JobType
    status: JobStatus
    input_assets: List[Dict[str, Any]] = []
    output_path: Optional[str] = None
    progress: int = 0
    error_message: Optional[str] = None
    processing_time: Optional[int] = None
    attempts: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class JobProgress(BaseModel):
    id: str
    status: JobStatus
    progress: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    processing_time: Optional[int] = None
    error_message: Optional[str] = None


# ===== AI 图片 =====

class GenerateImageRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=500)
    seed: Optional[int] = Field(default=None, ge=1, le=10000)
    width: Optional[int] = Field(default=None, ge=256, le=2048)
    height: Optional[int] = Field(default=None, ge=256, le=2048)
    save_to_asset: bool = True
    project_id: Optional[str] = None


class BatchGenerateImageRequest(BaseModel):
    prompts: List[str] = Field(..., min_length=1)
    width: Optional[int] = Field(default=None, ge=256, le=2048)
    height: Optional[int] = Field(default=None, ge=256, le=2048)
    save_to_asset: bool = True
    project_id: Optional[str] = None

    @field_validator("prompts")
    @classmethod
    def check_prompts(cls, v):
        for prompt in v:
            if not 1 <= len(prompt) <= 500:
                raise ValueError("每个提示词长度必须在 1-500 之间")
        return v


class RegenerateImageRequest(BaseModel):
    original_prompt: str = Field(..., min_length=1, max_length=500)
    width: Optional[int] = Field(default=None, ge=256, le=2048)
    height: Optional[int] = Field(default=None, ge=256, le=2048)
    save_to_asset: bool = True
