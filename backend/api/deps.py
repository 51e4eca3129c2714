"""
API 公共依赖
"""

from typing import Any, Dict, Optional

from fastapi import Header, HTTPException

from services.user_service import get_user_service


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    """
    通过 X-User-Id 请求头识别当前用户

    - 缺少请求头: 406
    - 用户不存在: 401
    """
    if not x_user_id:
        raise HTTPException(status_code=406, detail="Missing required header: X-User-Id")

    user = get_user_service().get_user(x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user
