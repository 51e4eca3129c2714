"""
媒体处理服务 - 使用 ffmpeg 将任务的输入素材合成为视频

合成方式由输入素材的插槽决定：
- background_video（可选 narration_audio / bgm_audio）: 动态背景视频
- background_image + bgm_audio（可选 text_content）: 静态图片视频
"""

import shutil
import subprocess
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging

from config import (
    DEFAULT_AUDIO_BITRATE,
    DEFAULT_IMAGE_DISPLAY_DURATION,
    DEFAULT_VIDEO_FPS,
    DEFAULT_VIDEO_RESOLUTION,
    FFMPEG_PATH,
    OUTPUT_DIR,
    TEMP_DIR,
)
from database.asset_db import AssetDatabase

logger = logging.getLogger(__name__)

DEFAULT_NARRATION_VOLUME = 1.0
DEFAULT_BGM_VOLUME = 0.3

ProgressCallback = Callable[[int], None]


class MediaProcessingError(Exception):
    """媒体合成失败"""


def escape_drawtext(text: str) -> str:
    """转义 drawtext 滤镜中的特殊字符"""
    return text.replace("\\", "\\\\").replace(":", "\\:").replace("'", "\\'").replace("%", "\\%")


def build_dynamic_background_command(
    ffmpeg_path: str,
    video_path: str,
    output_path: str,
    narration_path: Optional[str] = None,
    bgm_path: Optional[str] = None,
    narration_volume: float = DEFAULT_NARRATION_VOLUME,
    bgm_volume: float = DEFAULT_BGM_VOLUME,
    resolution: str = DEFAULT_VIDEO_RESOLUTION,
    fps: int = DEFAULT_VIDEO_FPS,
) -> List[str]:
    cmd = [ffmpeg_path, "-y", "-i", video_path]
    if narration_path:
        cmd += ["-i", narration_path]
    if bgm_path:
        cmd += ["-i", bgm_path]

    if narration_path and bgm_path:
        audio_filter = (
            f"[1:a]volume={narration_volume}[narration];"
            f"[2:a]volume={bgm_volume}[bgm];"
            "[narration][bgm]amix=inputs=2:duration=first:dropout_transition=2[aout]"
        )
        cmd += ["-filter_complex", audio_filter, "-map", "0:v", "-map", "[aout]"]
    elif narration_path or bgm_path:
        cmd += ["-map", "0:v", "-map", "1:a"]

    cmd += [
        "-c:v", "libx264",
        "-c:a", "aac",
        "-b:a", DEFAULT_AUDIO_BITRATE,
        "-s", resolution,
        "-r", str(fps),
        output_path,
    ]
    return cmd


def build_still_image_command(
    ffmpeg_path: str,
    image_path: str,
    audio_path: str,
    output_path: str,
    duration: float = DEFAULT_IMAGE_DISPLAY_DURATION,
    text: Optional[str] = None,
    resolution: str = DEFAULT_VIDEO_RESOLUTION,
    fps: int = DEFAULT_VIDEO_FPS,
) -> List[str]:
    cmd = [ffmpeg_path, "-y", "-loop", "1", "-i", image_path, "-i", audio_path]

    if text:
        cmd += ["-vf", f"drawtext=text='{escape_drawtext(text)}':fontsize=24:fontcolor=#FFFFFF:x=(w-text_w)/2:y=h-text_h-50"]

    cmd += [
        "-c:v", "libx264",
        "-t", str(duration),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", DEFAULT_AUDIO_BITRATE,
        "-shortest",
        "-s", resolution,
        "-r", str(fps),
        output_path,
    ]
    return cmd


class MediaProcessingService:
    """内容任务的媒体合成"""

    def __init__(self, ffmpeg_path: str = None, temp_dir: Path = None, output_dir: Path = None):
        self.ffmpeg_path = ffmpeg_path or FFMPEG_PATH
        self.temp_dir = temp_dir if temp_dir is not None else TEMP_DIR
        self.output_dir = output_dir if output_dir is not None else OUTPUT_DIR
        self.assets = AssetDatabase()

    def process_job(self, job: Dict[str, Any], progress_callback: Optional[ProgressCallback] = None) -> str:
        """
        处理内容任务

        Args:
            job: 任务字典
            progress_callback: 进度回调（0-100）

        Returns:
            输出视频路径（位于 OUTPUT_DIR/<job_id>/）

        Raises:
            MediaProcessingError: 缺少素材或 ffmpeg 执行失败
        """
        report = progress_callback or (lambda progress: None)
        start_time = time.time()
        job_temp_dir = self.temp_dir / job["id"]

        try:
            job_temp_dir.mkdir(parents=True, exist_ok=True)
            report(10)

            slots = self._load_slots(job)
            report(20)

            temp_output = job_temp_dir / f"output_{int(time.time() * 1000)}.mp4"
            cmd = self._build_command(slots, str(temp_output))
            report(30)

            self._run_ffmpeg(cmd, job["id"])
            report(90)

            final_dir = self.output_dir / job["id"]
            final_dir.mkdir(parents=True, exist_ok=True)
            final_path = final_dir / temp_output.name
            shutil.move(str(temp_output), str(final_path))
            report(100)

            logger.info(f"Job {job['id']} media processed in {int((time.time() - start_time) * 1000)}ms: {final_path}")
            return str(final_path)
        finally:
            shutil.rmtree(job_temp_dir, ignore_errors=True)

    def _load_slots(self, job: Dict[str, Any]) -> Dict[str, Tuple[Dict[str, Any], Dict[str, Any]]]:
        """返回 {slot_name: (asset, parameters)}，只包含属于任务用户的素材"""
        mappings = job.get("input_assets") or []
        asset_ids = [m["asset_id"] for m in mappings]
        assets = {a["id"]: a for a in self.assets.get_assets(asset_ids, job["user_id"])}

        slots = {}
        for mapping in mappings:
            asset = assets.get(mapping["asset_id"])
            if asset is None:
                logger.warning(f"Job {job['id']}: asset {mapping['asset_id']} not found for slot {mapping['slot_name']}")
                continue
            slots.setdefault(mapping["slot_name"], (asset, mapping.get("parameters") or {}))
        return slots

    def _build_command(self, slots: Dict[str, Tuple[Dict[str, Any], Dict[str, Any]]], output_path: str) -> List[str]:
        if "background_video" in slots:
            video, _ = slots["background_video"]
            narration = slots.get("narration_audio")
            bgm = slots.get("bgm_audio")
            return build_dynamic_background_command(
                self.ffmpeg_path,
                video["file_path"],
                output_path,
                narration_path=narration[0]["file_path"] if narration else None,
                bgm_path=bgm[0]["file_path"] if bgm else None,
                narration_volume=float(narration[1].get("volume", DEFAULT_NARRATION_VOLUME)) if narration else DEFAULT_NARRATION_VOLUME,
                bgm_volume=float(bgm[1].get("volume", DEFAULT_BGM_VOLUME)) if bgm else DEFAULT_BGM_VOLUME,
            )

        if "background_image" in slots and "bgm_audio" in slots:
            image, image_params = slots["background_image"]
            audio, audio_params = slots["bgm_audio"]
            duration = image_params.get("duration", audio_params.get("duration", DEFAULT_IMAGE_DISPLAY_DURATION))
            return build_still_image_command(
                self.ffmpeg_path,
                image["file_path"],
                audio["file_path"],
                output_path,
                duration=duration,
                text=self._read_text(slots.get("text_content")),
            )

        raise MediaProcessingError("Missing required assets")

    def _read_text(self, slot) -> Optional[str]:
        if not slot:
            return None
        asset, _ = slot
        text = asset["metadata"].get("text_content")
        if text:
            return text
        try:
            return Path(asset["file_path"]).read_text(encoding="utf-8").strip() or None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read text file {asset['file_path']}: {e}")
            return None

    def _run_ffmpeg(self, cmd: List[str], job_id: str) -> None:
        logger.info(f"Job {job_id} ffmpeg command: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            raise MediaProcessingError(f"ffmpeg not found: {self.ffmpeg_path}")

        if result.returncode != 0:
            stderr_tail = (result.stderr or "").strip().splitlines()[-5:]
            raise MediaProcessingError(f"ffmpeg exited with code {result.returncode}: {' '.join(stderr_tail)}")
