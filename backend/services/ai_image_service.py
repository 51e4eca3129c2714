"""
AI 图片生成服务
使用 Pollinations.AI 按提示词生成图片 URL，并登记为素材
"""

import random
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode
import logging

from config import MAX_BATCH_PROMPTS, MAX_PROMPT_LENGTH, POLLINATIONS_BASE_URL
from database.ai_image_db import AIImageDatabase
from models.schemas import AssetType, UploadSource

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = 1024
DEFAULT_MODEL = "turbo"
SEED_RANGE = (1, 10000)


def build_pollinations_url(prompt: str, options: Dict[str, Any], base_url: str = POLLINATIONS_BASE_URL) -> str:
    """构建 Pollinations.AI 生成 URL"""
    params = []
    if options.get("width"):
        params.append(("width", options["width"]))
    if options.get("height"):
        params.append(("height", options["height"]))
    if options.get("seed"):
        params.append(("seed", options["seed"]))
    if options.get("nologo"):
        params.append(("nologo", "true"))
    if options.get("model"):
        params.append(("model", options["model"]))

    url = f"{base_url.rstrip('/')}/{quote(prompt, safe='')}"
    return f"{url}?{urlencode(params)}" if params else url


class AIImageService:
    """AI 图片生成与历史管理"""

    def __init__(self):
        self.db = AIImageDatabase()

    def generate_image(self, prompt: str, user_id: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        生成图片

        Args:
            prompt: 提示词
            user_id: 用户 ID
            options: width, height, seed, nologo, model, save_to_asset, project_id

        Returns:
            {id, image_url, prompt, seed, status, asset?}

        Raises:
            ValueError: 提示词为空或过长，或生成的 URL 不合法
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(f"Prompt must not exceed {MAX_PROMPT_LENGTH} characters")

        options = {k: v for k, v in (options or {}).items() if v is not None}
        save_to_asset = options.pop("save_to_asset", True)
        project_id = options.pop("project_id", None)

        params = {
            "width": DEFAULT_IMAGE_SIZE,
            "height": DEFAULT_IMAGE_SIZE,
            "seed": random.randint(*SEED_RANGE),
            "nologo": True,
            "model": DEFAULT_MODEL,
            **options,
        }

        generation_url = build_pollinations_url(prompt, params)
        if not generation_url.startswith(("http://", "https://")):
            raise ValueError("Image generation failed: invalid generation URL")

        logger.debug(f"Generated AI image URL: {generation_url}")

        if not save_to_asset:
            return {
                "id": str(uuid.uuid4()),
                "image_url": generation_url,
                "prompt": prompt,
                "seed": params["seed"],
                "status": "completed",
            }

        title = f"AI生成图片_{prompt[:50]}"
        metadata = {
            "prompt": prompt,
            **params,
            "generated_at": datetime.now().isoformat(),
        }
        if project_id:
            metadata["project_id"] = project_id

        image = self.db.create_image(
            {
                "user_id": user_id,
                "file_name": title,
                "original_name": title,
                "file_path": generation_url,
                "url": generation_url,
                "file_size": 0,
                "mime_type": "image/png",
                "asset_type": AssetType.AI_GENERATED_IMAGE.value,
                "upload_source": UploadSource.AI_GENERATED.value,
                "metadata": metadata,
            },
            {
                "prompt": prompt,
                "seed": params["seed"],
                "generation_url": generation_url,
                "params": params,
            },
        )
        logger.info(f"AI image generated: {image['id']} for user {user_id}")

        return {
            "id": image["id"],
            "image_url": generation_url,
            "prompt": prompt,
            "seed": params["seed"],
            "status": "completed",
            "asset": image["asset"],
        }

    def batch_generate(self, prompts: List[str], user_id: str, options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """批量生成；单个提示词失败记为 status=failed"""
        if len(prompts) > MAX_BATCH_PROMPTS:
            raise ValueError(f"At most {MAX_BATCH_PROMPTS} prompts per batch")

        results = []
        for prompt in prompts:
            try:
                results.append(self.generate_image(prompt, user_id, dict(options or {})))
            except Exception as e:
                logger.error(f"Batch image generation failed for prompt '{prompt[:50]}': {e}", exc_info=True)
                results.append({
                    "id": "",
                    "image_url": "",
                    "prompt": prompt,
                    "seed": 0,
                    "status": "failed",
                    "error": str(e),
                })
        return results

    def regenerate(self, original_prompt: str, user_id: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """使用新的随机种子重新生成"""
        options = dict(options or {})
        options["seed"] = random.randint(*SEED_RANGE)
        return self.generate_image(original_prompt, user_id, options)

    def get_history(self, user_id: str, limit: int = 20, offset: int = 0) -> Dict[str, Any]:
        return self.db.list_history(user_id, limit=limit, offset=offset)

    def get_image(self, image_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_image(image_id, user_id)

    def delete_image(self, image_id: str, user_id: str) -> bool:
        return self.db.delete_image(image_id, user_id)

    def get_popular_prompts(self, limit: int = 10) -> List[Dict[str, Any]]:
        return self.db.popular_prompts(limit)


# 全局实例
_ai_image_service = None


def get_ai_image_service() -> AIImageService:
    global _ai_image_service
    if _ai_image_service is None:
        _ai_image_service = AIImageService()
    return _ai_image_service
