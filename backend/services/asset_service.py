"""
素材服务 - 素材上传、导入、检索与批量操作
"""

import hashlib
import mimetypes
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import logging

from config import ALLOWED_MIME_TYPES, MAX_FILE_SIZE, UPLOAD_DIR
from database.asset_db import AssetDatabase
from models.schemas import (
    AssetSearchQuery,
    BatchOperationRequest,
    BatchOperationType,
    DownloadFileQuery,
    ImportFromDriveRequest,
    UpdateAssetRequest,
    UploadSource,
)
from services.media_metadata_service import MediaMetadataService

logger = logging.getLogger(__name__)


def is_mime_allowed(mime_type: str, allowed: List[str] = None) -> bool:
    """MIME 类型校验，支持 image/* 形式的通配"""
    allowed = ALLOWED_MIME_TYPES if allowed is None else allowed
    mime_type = (mime_type or "").lower()
    for pattern in allowed:
        pattern = pattern.lower()
        if pattern.endswith("/*"):
            if mime_type.startswith(pattern[:-1]):
                return True
        elif mime_type == pattern:
            return True
    return False


class AssetService:
    """素材服务"""

    def __init__(self, upload_dir: Path = None, media_service: MediaMetadataService = None):
        self.upload_dir = upload_dir if upload_dir is not None else UPLOAD_DIR
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.db = AssetDatabase()
        self.media = media_service if media_service is not None else MediaMetadataService()

    def _store(self, original_name: str, chunks: Iterable[bytes]) -> Dict[str, Any]:
        """
        以 <uuid><ext> 逐块写入文件并返回基础元数据

        Raises:
            ValueError: 累计大小超过 MAX_FILE_SIZE，已写入的部分文件会被删除
        """
        extension = Path(original_name).suffix.lower()
        file_name = f"{uuid.uuid4()}{extension}"
        file_path = self.upload_dir / file_name

        digest = hashlib.sha256()
        size = 0
        try:
            with open(file_path, "wb") as f:
                for chunk in chunks:
                    size += len(chunk)
                    if size > MAX_FILE_SIZE:
                        raise ValueError(f"File too large: more than {MAX_FILE_SIZE} bytes")
                    digest.update(chunk)
                    f.write(chunk)
        except Exception:
            file_path.unlink(missing_ok=True)
            raise

        return {
            "file_name": file_name,
            "file_path": str(file_path),
            "file_size": size,
            "metadata": {
                "extension": extension,
                "size": size,
                "sha256": digest.hexdigest(),
            },
        }

    def _describe(self, stored: Dict[str, Any], mime_type: str) -> None:
        """补充缩略图与媒体元数据"""
        stored["thumbnail_path"] = self.media.generate_thumbnail(stored["file_path"])
        stored["metadata"].update(self.media.extract_metadata(stored["file_path"], mime_type))

    def _validate(self, content: bytes, mime_type: str) -> None:
        if len(content) > MAX_FILE_SIZE:
            raise ValueError(f"File too large: {len(content)} bytes (max {MAX_FILE_SIZE})")
        if not is_mime_allowed(mime_type):
            raise ValueError(f"File type not allowed: {mime_type}")

    def upload_asset(
        self,
        user_id: str,
        filename: str,
        content: bytes,
        mime_type: Optional[str],
        asset_type: str,
        tags: Optional[List[str]] = None,
        description: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        上传本地素材

        Raises:
            ValueError: 文件过大或类型不允许
        """
        mime_type = mime_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        self._validate(content, mime_type)

        stored = self._store(filename, [content])
        self._describe(stored, mime_type)
        asset = self.db.create_asset({
            "user_id": user_id,
            "original_name": filename,
            "mime_type": mime_type,
            "asset_type": asset_type,
            "upload_source": UploadSource.LOCAL.value,
            "tags": tags or [],
            "description": description,
            **stored,
        })
        logger.info(f"Asset uploaded: {asset['id']} ({filename}, {len(content)} bytes)")
        return asset

    def import_from_aliyun_drive(
        self,
        user_id: str,
        config: Dict[str, Any],
        request: ImportFromDriveRequest,
        drive_service
    ) -> Dict[str, Any]:
        """
        从用户的阿里云盘下载文件并登记为素材

        下载内容边读边写入磁盘，超过 MAX_FILE_SIZE 时立即中止。

        Raises:
            ValueError: 下载失败、文件过大或类型不允许
        """
        stream, filename, content_type = drive_service.download_file(
            config, DownloadFileQuery(file_path=request.file_path)
        )
        try:
            mime_type = content_type.split(";")[0].strip()
            if mime_type == "application/octet-stream":
                mime_type = mimetypes.guess_type(filename)[0] or mime_type
            if not is_mime_allowed(mime_type):
                raise ValueError(f"File type not allowed: {mime_type}")

            stored = self._store(filename, stream)
        finally:
            # 释放底层 HTTP 连接
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        stored["metadata"]["source_path"] = request.file_path
        self._describe(stored, mime_type)
        asset = self.db.create_asset({
            "user_id": user_id,
            "original_name": filename,
            "mime_type": mime_type,
            "asset_type": request.asset_type.value,
            "upload_source": UploadSource.ALIYUN_DRIVE.value,
            "tags": request.tags or [],
            "description": request.description,
            **stored,
        })
        logger.info(f"Asset imported from aliyun drive: {asset['id']} ({request.file_path}, {stored['file_size']} bytes)")
        return asset

    def search_assets(self, user_id: str, query: AssetSearchQuery) -> Dict[str, Any]:
        return self.db.search_assets(
            user_id,
            asset_type=query.asset_type.value if query.asset_type else None,
            tags=query.tags,
            search_keyword=query.search_keyword,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
            page=query.page,
            page_size=query.page_size,
        )

    def get_asset(self, asset_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_asset(asset_id, user_id)

    def get_user_assets(self, asset_ids: List[str], user_id: str) -> Dict[str, Dict[str, Any]]:
        """按 id 获取属于该用户的素材，返回 {asset_id: asset}"""
        return {a["id"]: a for a in self.db.get_assets(asset_ids, user_id)}

    def update_asset(self, asset_id: str, user_id: str, request: UpdateAssetRequest) -> Optional[Dict[str, Any]]:
        if not self.db.get_asset(asset_id, user_id):
            return None

        updates = {}
        if request.description is not None:
            updates["description"] = request.description
        if request.tags is not None:
            updates["tags"] = request.tags
        if request.asset_type is not None:
            updates["asset_type"] = request.asset_type.value
        return self.db.update_asset(asset_id, updates)

    def delete_asset(self, asset_id: str, user_id: str) -> bool:
        """删除素材及其本地文件（文件不存在时忽略）"""
        asset = self.db.get_asset(asset_id, user_id)
        if not asset:
            return False

        for path in (asset["file_path"], asset["thumbnail_path"]):
            if not path or asset["upload_source"] == UploadSource.AI_GENERATED.value:
                continue
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Failed to delete file {path} for asset {asset_id}: {e}")

        return self.db.delete_asset(asset_id)

    def batch_operation(self, user_id: str, request: BatchOperationRequest) -> Dict[str, int]:
        """
        批量操作

        Raises:
            PermissionError: 部分素材不存在或不属于该用户
        """
        asset_ids = list(dict.fromkeys(request.asset_ids))
        if self.db.count_owned(asset_ids, user_id) != len(asset_ids):
            raise PermissionError("Some assets not found or access denied")

        success = 0
        failed = 0
        for asset_id in asset_ids:
            try:
                if request.operation == BatchOperationType.DELETE:
                    self.delete_asset(asset_id, user_id)
                elif request.operation == BatchOperationType.UPDATE_TAGS:
                    if request.tags is not None:
                        self.db.update_asset(asset_id, {"tags": request.tags})
                elif request.operation == BatchOperationType.UPDATE_TYPE:
                    if request.asset_type is not None:
                        self.db.update_asset(asset_id, {"asset_type": request.asset_type.value})
                success += 1
            except Exception as e:
                logger.error(f"Batch operation {request.operation.value} failed for asset {asset_id}: {e}", exc_info=True)
                failed += 1

        logger.info(f"Batch {request.operation.value} for user {user_id}: {success} succeeded, {failed} failed")
        return {"success": success, "failed": failed}


# 全局实例
_asset_service = None


def get_asset_service() -> AssetService:
    global _asset_service
    if _asset_service is None:
        _asset_service = AssetService()
    return _asset_service
