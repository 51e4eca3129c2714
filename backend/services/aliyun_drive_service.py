"""
阿里云盘服务
- WebDAV 连接配置管理（密码加密存储）
- 文件操作：列出、上传、下载、创建目录、删除、移动、复制、连接测试
"""

import time
from datetime import datetime
from typing import Any, Dict, Iterator, Optional, Tuple
import logging
import posixpath

from config import WEBDAV_TIMEOUT
from database.drive_config_db import DriveConfigDatabase
from models.schemas import (
    ConnectionTestRequest,
    CopyItemRequest,
    CreateAliyunDriveConfigRequest,
    CreateDirectoryRequest,
    DeleteItemsRequest,
    DownloadFileQuery,
    ListFilesQuery,
    MoveItemRequest,
    UpdateAliyunDriveConfigRequest,
    UploadFileRequest,
)
from services.crypto_service import get_crypto_service
from services.webdav_client import WebDavClient, WebDavError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 64 * 1024


class PasswordDecryptionError(RuntimeError):
    """存储的 WebDAV 密码无法解密"""


def join_path(*parts: str) -> str:
    """
    以 POSIX 风格拼接路径，结果总是以 / 开头

    含 .. 的路径段会被拒绝，避免越出 base_path。
    """
    segments = []
    for part in parts:
        for segment in (part or "").split("/"):
            if segment in ("", "."):
                continue
            if segment == "..":
                raise ValueError(f"Invalid path: {part}")
            segments.append(segment)
    return "/" + "/".join(segments)


def relative_to_base(path: str, base_path: str) -> str:
    """将服务器路径转换为相对 base_path 的路径（以 / 开头）"""
    base = join_path(base_path)
    path = join_path(path)
    if base == "/":
        return path
    if path == base:
        return "/"
    if path.startswith(base + "/"):
        return path[len(base):]
    return path


class AliyunDriveService:
    """阿里云盘 WebDAV 服务"""

    def __init__(self):
        self.db = DriveConfigDatabase()
        self.crypto = get_crypto_service()

    # ===== 配置管理 =====

    def create_config(self, user_id: str, request: CreateAliyunDriveConfigRequest) -> Dict[str, Any]:
        if self.db.get_by_user(user_id):
            raise ValueError("Aliyun Drive config already exists for this user")

        config = self.db.create_config({
            "user_id": user_id,
            "webdav_url": request.webdav_url,
            "username": request.username,
            "encrypted_password": self.crypto.encrypt_to_json(request.password),
            "display_name": request.display_name,
            "timeout": request.timeout if request.timeout is not None else WEBDAV_TIMEOUT,
            "base_path": request.base_path or "/",
        })
        logger.info(f"Aliyun drive config created for user {user_id}")
        return config

    def find_by_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_by_user(user_id)

    def update_config(self, config: Dict[str, Any], request: UpdateAliyunDriveConfigRequest) -> Dict[str, Any]:
        """只更新请求中提供的字段，并刷新 last_sync_at"""
        updates: Dict[str, Any] = {}
        if request.webdav_url:
            updates["webdav_url"] = request.webdav_url
        if request.username:
            updates["username"] = request.username
        if request.password:
            updates["encrypted_password"] = self.crypto.encrypt_to_json(request.password)

        provided = request.model_fields_set
        for field in ("display_name", "timeout", "base_path", "is_active"):
            if field in provided and getattr(request, field) is not None:
                updates[field] = getattr(request, field)

        updates["last_sync_at"] = datetime.now()
        return self.db.update_config(config["id"], updates)

    def get_decrypted_password(self, config: Dict[str, Any]) -> str:
        try:
            return self.crypto.decrypt(config["encrypted_password"])
        except (ValueError, RuntimeError) as e:
            logger.error(f"Failed to decrypt password for config {config['id']}: {e}", exc_info=True)
            raise PasswordDecryptionError("Failed to decrypt password")

    def delete_config(self, config: Dict[str, Any]) -> bool:
        return self.db.delete_config(config["id"])

    def update_last_sync_time(self, config: Dict[str, Any]) -> None:
        config["last_sync_at"] = self.db.touch_last_sync(config["id"])

    @staticmethod
    def to_public(config: Dict[str, Any]) -> Dict[str, Any]:
        """对外视图（不含密码）"""
        return {k: v for k, v in config.items() if k != "encrypted_password"}

    # ===== 文件操作 =====

    def _client(self, config: Dict[str, Any]) -> WebDavClient:
        return WebDavClient(
            config["webdav_url"],
            config["username"],
            self.get_decrypted_password(config),
            config["timeout"],
        )

    def list_files(self, config: Dict[str, Any], query: ListFilesQuery) -> Dict[str, Any]:
        """
        列出目录内容

        目录排在文件之前，再按名称排序；搜索在分页前进行，total 为过滤后的数量。
        """
        base_path = config.get("base_path") or "/"
        target_path = join_path(base_path, query.path)

        try:
            with self._client(config) as client:
                entries = client.propfind(target_path, depth=1)
        except WebDavError as e:
            logger.error(f"Failed to list files at {target_path}: {e}", exc_info=True)
            raise ValueError(f"Failed to list files: {e}")

        files = []
        for entry in entries:
            if join_path(entry["href"]) == target_path:
                continue
            files.append({
                "name": entry["name"],
                "path": relative_to_base(entry["href"], base_path),
                "is_directory": entry["is_directory"],
                "size": entry["size"],
                "content_type": entry["content_type"],
                "last_modified": entry["last_modified"],
                "etag": entry["etag"],
            })

        if query.search:
            keyword = query.search.lower()
            files = [f for f in files if keyword in f["name"].lower()]

        files.sort(key=lambda f: (not f["is_directory"], f["name"].lower()))

        total = len(files)
        page = files[query.offset:query.offset + query.limit]

        self.update_last_sync_time(config)
        return {
            "files": page,
            "path": query.path,
            "total": total,
            "has_more": query.offset + len(page) < total,
        }

    def upload_file(self, config: Dict[str, Any], request: UploadFileRequest, content: bytes,
                    content_type: Optional[str] = None) -> Dict[str, Any]:
        base_path = config.get("base_path") or "/"
        relative_path = join_path(request.path, request.file_name)
        target_path = join_path(base_path, relative_path)

        try:
            with self._client(config) as client:
                if not request.overwrite and client.exists(target_path):
                    return {
                        "success": False,
                        "error": f"File already exists: {relative_path}",
                    }
                client.put(target_path, content, content_type or "application/octet-stream")
        except WebDavError as e:
            logger.error(f"Failed to upload file {target_path}: {e}", exc_info=True)
            return {"success": False, "error": f"Failed to upload file: {e}"}

        self.update_last_sync_time(config)
        logger.info(f"Uploaded {len(content)} bytes to {target_path}")
        return {
            "success": True,
            "message": "File uploaded successfully",
            "path": relative_path,
        }

    def download_file(self, config: Dict[str, Any], query: DownloadFileQuery) -> Tuple[Iterator[bytes], str, str]:
        """
        下载文件

        Returns:
            (数据块迭代器, 文件名, content type)
        """
        target_path = join_path(config.get("base_path") or "/", query.file_path)
        client = self._client(config)
        try:
            response = client.get(target_path)
        except WebDavError as e:
            client.close()
            logger.error(f"Failed to download file {target_path}: {e}", exc_info=True)
            raise ValueError(f"Failed to download file: {e}")

        filename = query.download_name or posixpath.basename(target_path)
        content_type = response.headers.get("Content-Type") or "application/octet-stream"

        def stream() -> Iterator[bytes]:
            try:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        yield chunk
            finally:
                response.close()
                client.close()

        self.update_last_sync_time(config)
        return stream(), filename, content_type

    def create_directory(self, config: Dict[str, Any], request: CreateDirectoryRequest) -> Dict[str, Any]:
        relative_path = join_path(request.path, request.directory_name)
        target_path = join_path(config.get("base_path") or "/", relative_path)

        try:
            with self._client(config) as client:
                client.mkcol(target_path)
        except WebDavError as e:
            logger.error(f"Failed to create directory {target_path}: {e}", exc_info=True)
            return {"success": False, "error": f"Failed to create directory: {e}"}

        self.update_last_sync_time(config)
        return {
            "success": True,
            "message": "Directory created successfully",
            "path": relative_path,
        }

    def delete_items(self, config: Dict[str, Any], request: DeleteItemsRequest) -> Dict[str, Any]:
        """逐个删除；单项失败记录在 message 中，不中断其余项"""
        base_path = config.get("base_path") or "/"
        results = []
        failed = 0

        with self._client(config) as client:
            for item_path in request.paths:
                try:
                    client.delete(join_path(base_path, item_path))
                    results.append(f"Deleted: {item_path}")
                except (WebDavError, ValueError) as e:
                    failed += 1
                    logger.warning(f"Failed to delete {item_path}: {e}")
                    results.append(f"Failed to delete {item_path}: {e}")

        self.update_last_sync_time(config)
        return {
            "success": True,
            "message": "; ".join(results),
            "failed": failed,
        }

    def move_item(self, config: Dict[str, Any], request: MoveItemRequest) -> Dict[str, Any]:
        return self._transfer(config, request, "move")

    def copy_item(self, config: Dict[str, Any], request: CopyItemRequest) -> Dict[str, Any]:
        return self._transfer(config, request, "copy")

    def _transfer(self, config: Dict[str, Any], request: MoveItemRequest, operation: str) -> Dict[str, Any]:
        base_path = config.get("base_path") or "/"
        source_path = join_path(base_path, request.source_path)
        target_path = join_path(base_path, request.target_path)

        try:
            with self._client(config) as client:
                getattr(client, operation)(source_path, target_path, overwrite=request.overwrite)
        except WebDavError as e:
            logger.error(f"Failed to {operation} {source_path} -> {target_path}: {e}", exc_info=True)
            return {"success": False, "error": f"Failed to {operation} item: {e}"}

        self.update_last_sync_time(config)
        past = "moved" if operation == "move" else "copied"
        return {
            "success": True,
            "message": f"Item {past} successfully",
            "path": join_path(request.target_path),
        }

    def test_connection(self, request: ConnectionTestRequest) -> Dict[str, Any]:
        """对 base_path 做 Depth 0 的 PROPFIND，不抛出异常"""
        start = time.time()
        timeout = request.timeout if request.timeout is not None else WEBDAV_TIMEOUT

        try:
            target_path = join_path(request.base_path or "/")
            with WebDavClient(request.webdav_url, request.username, request.password, timeout) as client:
                client.propfind(target_path, depth=0)
        except WebDavError as e:
            elapsed = int((time.time() - start) * 1000)
            if e.status_code == 401:
                message = "Authentication failed: invalid username or password"
            else:
                message = "Connection failed"
            logger.warning(f"WebDAV connection test failed for {request.webdav_url}: {e}")
            return {"success": False, "message": message, "response_time": elapsed, "error": str(e)}
        except ValueError as e:
            elapsed = int((time.time() - start) * 1000)
            return {"success": False, "message": "Connection failed", "response_time": elapsed, "error": str(e)}

        elapsed = int((time.time() - start) * 1000)
        logger.info(f"WebDAV connection test succeeded for {request.webdav_url} in {elapsed}ms")
        return {"success": True, "message": "Connection successful", "response_time": elapsed}


# 全局实例
_aliyun_drive_service = None


def get_aliyun_drive_service() -> AliyunDriveService:
    global _aliyun_drive_service
    if _aliyun_drive_service is None:
        _aliyun_drive_service = AliyunDriveService()
    return _aliyun_drive_service
