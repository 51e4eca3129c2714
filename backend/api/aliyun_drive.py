"""
阿里云盘 API
- WebDAV 配置管理
- 文件操作（列出 / 上传 / 下载 / 目录 / 删除 / 移动 / 复制 / 连接测试）
"""

from typing import Any, Dict, Optional
from urllib.parse import quote
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile
from fastapi.responses import StreamingResponse

from api.deps import get_current_user
from models.schemas import (
    AliyunDriveConfigInfo,
    ConnectionTestRequest,
    ConnectionTestResponse,
    CopyItemRequest,
    CreateAliyunDriveConfigRequest,
    CreateDirectoryRequest,
    DeleteItemsRequest,
    DownloadFileQuery,
    FileOperationResponse,
    ListFilesQuery,
    ListFilesResponse,
    MoveItemRequest,
    SyncConfigResponse,
    UpdateAliyunDriveConfigRequest,
    UploadFileRequest,
)
from services.aliyun_drive_service import PasswordDecryptionError, get_aliyun_drive_service

logger = logging.getLogger(__name__)
router = APIRouter()

drive_service = get_aliyun_drive_service()


def _require_config(user: Dict[str, Any]) -> Dict[str, Any]:
    config = drive_service.find_by_user(user["id"])
    if not config:
        raise HTTPException(status_code=404, detail="WebDAV config not found")
    return config


def _require_own_config(user: Dict[str, Any], config_id: str) -> Dict[str, Any]:
    config = drive_service.find_by_user(user["id"])
    if not config or config["id"] != config_id:
        raise HTTPException(status_code=404, detail="WebDAV config not found")
    return config


def content_disposition(filename: str) -> str:
    """attachment 头，非 ASCII 文件名使用 RFC 5987 编码"""
    try:
        filename.encode("ascii")
        safe = filename.replace('"', "")
        return f'attachment; filename="{safe}"'
    except UnicodeEncodeError:
        fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


# ===== 配置管理 =====

@router.post("/config", response_model=AliyunDriveConfigInfo, status_code=201)
def create_config(request: CreateAliyunDriveConfigRequest, user: dict = Depends(get_current_user)):
    try:
        config = drive_service.create_config(user["id"], request)
        return AliyunDriveConfigInfo(**drive_service.to_public(config))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"创建 WebDAV 配置失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"创建 WebDAV 配置失败: {str(e)}")


@router.get("/config", response_model=Optional[AliyunDriveConfigInfo])
def get_config(user: dict = Depends(get_current_user)):
    """获取当前用户的配置，不存在时返回 null"""
    config = drive_service.find_by_user(user["id"])
    return AliyunDriveConfigInfo(**drive_service.to_public(config)) if config else None


@router.put("/config/{config_id}", response_model=AliyunDriveConfigInfo)
def update_config(config_id: str, request: UpdateAliyunDriveConfigRequest, user: dict = Depends(get_current_user)):
    config = _require_own_config(user, config_id)
    try:
        updated = drive_service.update_config(config, request)
        return AliyunDriveConfigInfo(**drive_service.to_public(updated))
    except Exception as e:
        logger.error(f"更新 WebDAV 配置失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"更新 WebDAV 配置失败: {str(e)}")


@router.delete("/config/{config_id}", status_code=204)
def delete_config(config_id: str, user: dict = Depends(get_current_user)):
    config = _require_own_config(user, config_id)
    drive_service.delete_config(config)
    return Response(status_code=204)


@router.post("/config/{config_id}/sync", response_model=SyncConfigResponse)
def sync_config(config_id: str, user: dict = Depends(get_current_user)):
    config = _require_own_config(user, config_id)
    drive_service.update_last_sync_time(config)
    return SyncConfigResponse(message="Sync time updated", last_sync_at=config["last_sync_at"])


# ===== 文件操作 =====

@router.get("/files", response_model=ListFilesResponse)
def list_files(
    path: str = Query("/", description="目录路径（相对 base_path）"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    search: Optional[str] = Query(None, description="按名称过滤（不区分大小写）"),
    user: dict = Depends(get_current_user)
):
    config = _require_config(user)
    try:
        result = drive_service.list_files(config, ListFilesQuery(path=path, limit=limit, offset=offset, search=search))
        return ListFilesResponse(**result)
    except PasswordDecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/files/upload", response_model=FileOperationResponse)
def upload_file(
    file: Optional[UploadFile] = File(None),
    path: str = Form("/"),
    file_name: Optional[str] = Form(None),
    overwrite: bool = Form(False),
    user: dict = Depends(get_current_user)
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    config = _require_config(user)
    content = file.file.read()
    try:
        request = UploadFileRequest(file_name=file_name or file.filename, path=path, overwrite=overwrite)
        result = drive_service.upload_file(config, request, content, file.content_type)
        return FileOperationResponse(**result)
    except PasswordDecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/files/download")
def download_file(
    file_path: str = Query(..., description="文件路径（相对 base_path）"),
    download_name: Optional[str] = Query(None),
    user: dict = Depends(get_current_user)
):
    config = _require_config(user)
    try:
        stream, filename, content_type = drive_service.download_file(
            config, DownloadFileQuery(file_path=file_path, download_name=download_name)
        )
    except PasswordDecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return StreamingResponse(
        stream,
        media_type=content_type,
        headers={"Content-Disposition": content_disposition(filename)}
    )


@router.post("/directories", response_model=FileOperationResponse)
def create_directory(request: CreateDirectoryRequest, user: dict = Depends(get_current_user)):
    return _file_operation(user, drive_service.create_directory, request)


@router.delete("/items", response_model=FileOperationResponse)
def delete_items(request: DeleteItemsRequest, user: dict = Depends(get_current_user)):
    return _file_operation(user, drive_service.delete_items, request)


@router.post("/items/move", response_model=FileOperationResponse)
def move_item(request: MoveItemRequest, user: dict = Depends(get_current_user)):
    return _file_operation(user, drive_service.move_item, request)


@router.post("/items/copy", response_model=FileOperationResponse)
def copy_item(request: CopyItemRequest, user: dict = Depends(get_current_user)):
    return _file_operation(user, drive_service.copy_item, request)


@router.post("/test-connection", response_model=ConnectionTestResponse)
def test_connection(request: ConnectionTestRequest, user: dict = Depends(get_current_user)):
    return ConnectionTestResponse(**drive_service.test_connection(request))


def _file_operation(user: Dict[str, Any], operation, request) -> FileOperationResponse:
    config = _require_config(user)
    try:
        return FileOperationResponse(**operation(config, request))
    except PasswordDecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
