"""
素材管理 API
"""

from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile

from api.deps import get_current_user
from models.schemas import (
    AssetInfo,
    AssetSearchQuery,
    AssetSearchResponse,
    AssetType,
    BatchOperationRequest,
    BatchOperationResponse,
    ImportFromDriveRequest,
    UpdateAssetRequest,
)
from services.aliyun_drive_service import PasswordDecryptionError, get_aliyun_drive_service
from services.asset_service import get_asset_service

logger = logging.getLogger(__name__)
router = APIRouter()

asset_service = get_asset_service()
drive_service = get_aliyun_drive_service()


def _split_tags(tags: Optional[str]) -> List[str]:
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


@router.post("/upload", response_model=AssetInfo, status_code=201)
def upload_asset(
    file: UploadFile = File(...),
    asset_type: AssetType = Form(...),
    tags: Optional[str] = Form(None, description="逗号分隔的标签"),
    description: Optional[str] = Form(None),
    user: dict = Depends(get_current_user)
):
    """
    上传素材文件

    请求 (multipart/form-data):
    - file: 文件
    - asset_type: 素材类型
    - tags: 逗号分隔的标签（可选）
    - description: 描述（可选）
    """
    try:
        content = file.file.read()
        asset = asset_service.upload_asset(
            user["id"],
            file.filename,
            content,
            file.content_type,
            asset_type.value,
            tags=_split_tags(tags),
            description=description
        )
        return AssetInfo(**asset)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"素材上传失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"素材上传失败: {str(e)}")


@router.post("/import/aliyun-drive", response_model=AssetInfo, status_code=201)
def import_from_aliyun_drive(request: ImportFromDriveRequest, user: dict = Depends(get_current_user)):
    config = drive_service.find_by_user(user["id"])
    if not config:
        raise HTTPException(status_code=404, detail="WebDAV config not found")

    try:
        asset = asset_service.import_from_aliyun_drive(user["id"], config, request, drive_service)
        return AssetInfo(**asset)
    except PasswordDecryptionError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"从阿里云盘导入素材失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"从阿里云盘导入素材失败: {str(e)}")


@router.get("", response_model=AssetSearchResponse)
async def search_assets(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    asset_type: Optional[AssetType] = Query(None),
    tags: Optional[str] = Query(None, description="逗号分隔的标签，任意一个匹配即可"),
    search_keyword: Optional[str] = Query(None),
    sort_by: str = Query("created_at"),
    sort_order: str = Query("DESC", pattern="^(ASC|DESC|asc|desc)$"),
    user: dict = Depends(get_current_user)
):
    query = AssetSearchQuery(
        page=page,
        page_size=page_size,
        asset_type=asset_type,
        tags=_split_tags(tags) or None,
        search_keyword=search_keyword,
        sort_by=sort_by,
        sort_order=sort_order
    )
    result = asset_service.search_assets(user["id"], query)
    return AssetSearchResponse(
        data=[AssetInfo(**a) for a in result["data"]],
        total=result["total"],
        page=result["page"],
        page_size=result["page_size"],
        total_pages=result["total_pages"]
    )


@router.post("/batch", response_model=BatchOperationResponse)
async def batch_operation(request: BatchOperationRequest, user: dict = Depends(get_current_user)):
    try:
        return BatchOperationResponse(**asset_service.batch_operation(user["id"], request))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/{asset_id}", response_model=AssetInfo)
async def get_asset(asset_id: str, user: dict = Depends(get_current_user)):
    asset = asset_service.get_asset(asset_id, user["id"])
    if not asset:
        raise HTTPException(status_code=404, detail=f"Asset with ID {asset_id} not found")
    return AssetInfo(**asset)


@router.put("/{asset_id}", response_model=AssetInfo)
async def update_asset(asset_id: str, request: UpdateAssetRequest, user: dict = Depends(get_current_user)):
    asset = asset_service.update_asset(asset_id, user["id"], request)
    if not asset:
        raise HTTPException(status_code=404, detail=f"Asset with ID {asset_id} not found")
    return AssetInfo(**asset)


@router.delete("/{asset_id}", status_code=204)
async def delete_asset(asset_id: str, user: dict = Depends(get_current_user)):
    if not asset_service.delete_asset(asset_id, user["id"]):
        raise HTTPException(status_code=404, detail=f"Asset with ID {asset_id} not found")
    return Response(status_code=204)
