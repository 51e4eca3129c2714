"""
用户管理 API
"""

from fastapi import APIRouter, HTTPException, Query, Response
import logging

from models.schemas import UserCreate, UserInfo, UserListResponse, UserUpdate
from services.user_service import get_user_service

logger = logging.getLogger(__name__)
router = APIRouter()

user_service = get_user_service()


@router.post("", response_model=UserInfo, status_code=201)
async def create_user(request: UserCreate):
    """创建用户（密码不会出现在响应中）"""
    try:
        user = user_service.create_user(request)
        return UserInfo(**user_service.to_public(user))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"创建用户失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"创建用户失败: {str(e)}")


@router.get("", response_model=UserListResponse)
async def list_users(
    page: int = Query(1, ge=1, description="页码"),
    page_size: int = Query(20, ge=1, le=100, description="每页数量")
):
    try:
        result = user_service.list_users(page, page_size)
        return UserListResponse(
            users=[UserInfo(**user_service.to_public(u)) for u in result["users"]],
            total=result["total"],
            page=page,
            page_size=page_size
        )
    except Exception as e:
        logger.error(f"获取用户列表失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"获取用户列表失败: {str(e)}")


@router.get("/{user_id}", response_model=UserInfo)
async def get_user(user_id: str):
    user = user_service.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return UserInfo(**user_service.to_public(user))


@router.put("/{user_id}", response_model=UserInfo)
async def update_user(user_id: str, request: UserUpdate):
    try:
        user = user_service.update_user(user_id, request)
        if not user:
            raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
        return UserInfo(**user_service.to_public(user))
    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"更新用户失败: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"更新用户失败: {str(e)}")


@router.delete("/{user_id}", status_code=204)
async def delete_user(user_id: str):
    if not user_service.delete_user(user_id):
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return Response(status_code=204)


@router.get("/{user_id}/aliyun-drive-status")
async def get_aliyun_drive_status(user_id: str):
    """用户是否已配置并启用阿里云盘"""
    if not user_service.get_user(user_id):
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return {"has_config": user_service.check_aliyun_drive_config_status(user_id)}
