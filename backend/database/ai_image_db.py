"""
AI 生成图片数据库管理器
"""

from typing import Optional, Dict, Any, List
from sqlalchemy import desc, func
import logging

from .models import AIGeneratedImage, Asset, init_db, get_db_session
from .asset_db import AssetDatabase

logger = logging.getLogger(__name__)


class AIImageDatabase:
    """AI 图片数据库管理器（图片记录与其素材一对一）"""

    def __init__(self):
        init_db()
        self._assets = AssetDatabase()

    def create_image(self, asset_data: Dict[str, Any], image_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        在同一事务中创建素材与图片记录

        Returns:
            图片记录字典，含 asset 字段
        """
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
            )
            db.add(asset)
            db.flush()

            image = AIGeneratedImage(
                asset_id=asset.id,
                prompt=image_data["prompt"],
                seed=image_data["seed"],
                generation_url=image_data["generation_url"],
                params=image_data.get("params") or {},
            )
            db.add(image)
            db.flush()

            logger.info(f"Created AI image {image.id} (asset {asset.id})")
            return self._image_to_dict(image, asset)

    def get_image(self, image_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        with get_db_session() as db:
            row = (
                db.query(AIGeneratedImage, Asset)
                .join(Asset, AIGeneratedImage.asset_id == Asset.id)
                .filter(AIGeneratedImage.id == image_id, Asset.user_id == user_id)
                .first()
            )
            if not row:
                return None
            image, asset = row
            return self._image_to_dict(image, asset)

    def list_history(self, user_id: str, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        with get_db_session() as db:
            query = (
                db.query(AIGeneratedImage, Asset)
                .join(Asset, AIGeneratedImage.asset_id == Asset.id)
                .filter(Asset.user_id == user_id)
            )
            total = query.count()
            rows = query.order_by(desc(AIGeneratedImage.generated_at)).offset(offset).limit(limit).all()

            return {
                "items": [self._image_to_dict(image, asset) for image, asset in rows],
                "total": total
            }

    def delete_image(self, image_id: str, user_id: str) -> bool:
        """删除图片记录及其素材"""
        with get_db_session() as db:
            row = (
                db.query(AIGeneratedImage, Asset)
                .join(Asset, AIGeneratedImage.asset_id == Asset.id)
                .filter(AIGeneratedImage.id == image_id, Asset.user_id == user_id)
                .first()
            )
            if not row:
                return False

            image, asset = row
            db.delete(image)
            db.flush()
            db.delete(asset)
            logger.info(f"Deleted AI image {image_id} and asset {asset.id}")
            return True

    def popular_prompts(self, limit: int = 10) -> List[Dict[str, Any]]:
        with get_db_session() as db:
            count = func.count(AIGeneratedImage.id).label("count")
            rows = (
                db.query(AIGeneratedImage.prompt, count)
                .group_by(AIGeneratedImage.prompt)
                .order_by(desc(count), AIGeneratedImage.prompt)
                .limit(limit)
                .all()
            )
            return [{"prompt": prompt, "count": n} for prompt, n in rows]

    def _image_to_dict(self, image: AIGeneratedImage, asset: Asset) -> Dict[str, Any]:
        return {
            "id": image.id,
            "asset_id": image.asset_id,
            "prompt": image.prompt,
            "seed": image.seed,
            "generation_url": image.generation_url,
            "params": dict(image.params or {}),
            "generated_at": image.generated_at.isoformat() if image.generated_at else None,
            "asset": self._assets._asset_to_dict(asset),
        }
