"""
素材数据库管理器
"""

from typing import Optional, Dict, Any, List
from datetime import datetime
from sqlalchemy import asc, desc
import logging

from .models import Asset, init_db, get_db_session

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "created_at": Asset.created_at,
    "updated_at": Asset.updated_at,
    "file_size": Asset.file_size,
    "original_name": Asset.original_name,
    "file_name": Asset.file_name,
}


class AssetDatabase:
    """素材数据库管理器"""

    def __init__(self):
        init_db()

    def create_asset(self, asset_data: Dict[str, Any]) -> Dict[str, Any]:
        with get_db_session() as db:
            asset = Asset(
                user_id=asset_data["user_id"],
                file_name=asset_data["file_name"],
                original_name=asset_data["original_name"],
                file_path=asset_data["file_path"],
                url=asset_data.get("url"),
                file_size=asset_data.get("file_size", 0),
                mime_type=asset_data["mime_type"],
                asset_type=asset_data["asset_type"],
                upload_source=asset_data["upload_source"],
                tags=asset_data.get("tags") or [],
                description=asset_data.get("description"),
                metadata_json=asset_data.get("metadata") or {},
                thumbnail_path=asset_data.get("thumbnail_path"),
            )
            db.add(asset)
            db.flush()

            logger.info(f"Created asset {asset.id} ({asset.asset_type}) for user {asset.user_id}")
            return self._asset_to_dict(asset)

    def get_asset(self, asset_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        with get_db_session() as db:
            query = db.query(Asset).filter(Asset.id == asset_id)
            if user_id is not None:
                query = query.filter(Asset.user_id == user_id)
            asset = query.first()
            return self._asset_to_dict(asset) if asset else None

    def get_assets(self, asset_ids: List[str], user_id: str) -> List[Dict[str, Any]]:
        """按 id 批量获取属于该用户的素材"""
        if not asset_ids:
            return []
        with get_db_session() as db:
            assets = db.query(Asset).filter(
                Asset.id.in_(asset_ids),
                Asset.user_id == user_id
            ).all()
            return [self._asset_to_dict(a) for a in assets]

    def search_assets(
        self,
        user_id: str,
        asset_type: Optional[str] = None,
        tags: Optional[List[str]] = None,
        search_keyword: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "DESC",
        page: int = 1,
        page_size: int = 20
    ) -> Dict[str, Any]:
        """
        搜索素材

        标签与关键词匹配在取出用户素材后进行（tags 以 JSON 存储，
        不同数据库对 JSON 数组的查询能力不一致）。
        """
        column = SORTABLE_COLUMNS.get(sort_by, Asset.created_at)
        order = asc(column) if sort_order.upper() == "ASC" else desc(column)

        with get_db_session() as db:
            query = db.query(Asset).filter(Asset.user_id == user_id)
            if asset_type:
                query = query.filter(Asset.asset_type == asset_type)
            assets = [self._asset_to_dict(a) for a in query.order_by(order).all()]

        if tags:
            wanted = set(tags)
            assets = [a for a in assets if wanted.intersection(a["tags"])]

        if search_keyword:
            keyword = search_keyword.lower()
            assets = [
                a for a in assets
                if keyword in a["original_name"].lower()
                or keyword in (a["description"] or "").lower()
                or keyword in [tag.lower() for tag in a["tags"]]
            ]

        total = len(assets)
        start = (page - 1) * page_size
        return {
            "data": assets[start:start + page_size],
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": (total + page_size - 1) // page_size,
        }

    def update_asset(self, asset_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with get_db_session() as db:
            asset = db.query(Asset).filter(Asset.id == asset_id).first()
            if not asset:
                return None

            for key, value in updates.items():
                if key == "metadata":
                    asset.metadata_json = value
                elif hasattr(asset, key):
                    setattr(asset, key, value)

            asset.updated_at = datetime.now()
            db.flush()
            return self._asset_to_dict(asset)

    def delete_asset(self, asset_id: str) -> bool:
        with get_db_session() as db:
            asset = db.query(Asset).filter(Asset.id == asset_id).first()
            if not asset:
                return False
            db.delete(asset)
            logger.info(f"Deleted asset: {asset_id}")
            return True

    def count_owned(self, asset_ids: List[str], user_id: str) -> int:
        with get_db_session() as db:
            return db.query(Asset).filter(
                Asset.id.in_(asset_ids),
                Asset.user_id == user_id
            ).count()

    def _asset_to_dict(self, asset: Asset) -> Dict[str, Any]:
        return {
            "id": asset.id,
            "user_id": asset.user_id,
            "file_name": asset.file_name,
            "original_name": asset.original_name,
            "file_path": asset.file_path,
            "url": asset.url,
            "file_size": asset.file_size,
            "mime_type": asset.mime_type,
            "asset_type": asset.asset_type,
            "upload_source": asset.upload_source,
            "tags": list(asset.tags or []),
            "description": asset.description,
            "metadata": dict(asset.metadata_json or {}),
            "thumbnail_path": asset.thumbnail_path,
            "created_at": asset.created_at.isoformat() if asset.created_at else None,
            "updated_at": asset.updated_at.isoformat() if asset.updated_at else None,
        }
