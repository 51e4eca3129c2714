"""
素材媒体信息服务 - 使用 ffmpeg 生成缩略图，使用 ffprobe 提取媒体元数据

两者都是尽力而为：工具缺失或执行失败时只记录警告，不影响素材入库。
"""

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from config import FFMPEG_PATH, FFPROBE_PATH, THUMBNAIL_DIR

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"}
VIDEO_EXTENSIONS = {".mp4", ".avi", ".mov", ".mkv", ".webm", ".flv"}
THUMBNAIL_SIZE = 200


class MediaToolError(Exception):
    """ffmpeg / ffprobe 不可用或执行失败"""


def thumbnail_filter(size: int = THUMBNAIL_SIZE) -> str:
    """等比缩放到 size x size 以内并居中补边"""
    return (
        f"scale={size}:{size}:force_original_aspect_ratio=decrease,"
        f"pad={size}:{size}:(ow-iw)/2:(oh-ih)/2"
    )


def parse_frame_rate(rate: Optional[str]) -> Optional[float]:
    """'30000/1001' -> 29.97"""
    if not rate:
        return None
    num, _, den = rate.partition("/")
    try:
        num, den = float(num), float(den or 1)
    except ValueError:
        return None
    return round(num / den, 2) if den else None


def parse_ffprobe_output(output: Dict[str, Any]) -> Dict[str, Any]:
    """将 ffprobe 的 JSON 输出整理为素材元数据"""
    metadata = {}

    fmt = output.get("format") or {}
    if fmt:
        try:
            metadata["duration"] = float(fmt.get("duration") or 0)
        except ValueError:
            metadata["duration"] = 0.0
        try:
            metadata["bitrate"] = int(fmt.get("bit_rate") or 0)
        except ValueError:
            metadata["bitrate"] = 0
        if fmt.get("format_name"):
            metadata["format"] = fmt["format_name"]

    streams = output.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    if video:
        metadata["width"] = video.get("width")
        metadata["height"] = video.get("height")
        metadata["codec"] = video.get("codec_name")
        fps = parse_frame_rate(video.get("r_frame_rate"))
        if fps is not None:
            metadata["fps"] = fps

    if audio:
        metadata["channels"] = audio.get("channels")
        if audio.get("sample_rate"):
            metadata["sample_rate"] = int(audio["sample_rate"])
        metadata.setdefault("codec", audio.get("codec_name"))

    return {k: v for k, v in metadata.items() if v is not None}


class MediaMetadataService:
    """缩略图与媒体元数据"""

    def __init__(self, ffmpeg_path: str = None, ffprobe_path: str = None, thumbnail_dir: Path = None):
        self.ffmpeg_path = ffmpeg_path or FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or FFPROBE_PATH
        self.thumbnail_dir = thumbnail_dir if thumbnail_dir is not None else THUMBNAIL_DIR
        self.thumbnail_dir.mkdir(parents=True, exist_ok=True)

    def _run(self, cmd: List[str]) -> str:
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except FileNotFoundError:
            raise MediaToolError(f"{Path(cmd[0]).name} not found: {cmd[0]}")

        if result.returncode != 0:
            stderr_tail = (result.stderr or "").strip().splitlines()[-3:]
            raise MediaToolError(f"{Path(cmd[0]).name} exited with code {result.returncode}: {' '.join(stderr_tail)}")
        return result.stdout or ""

    def generate_thumbnail(self, file_path: str) -> Optional[str]:
        """
        为图片或视频生成 jpg 缩略图

        Returns:
            缩略图路径；其他文件类型或生成失败时返回 None
        """
        source = Path(file_path)
        extension = source.suffix.lower()
        if extension in IMAGE_EXTENSIONS:
            seek = []
        elif extension in VIDEO_EXTENSIONS:
            # 取第 1 秒的画面
            seek = ["-ss", "00:00:01"]
        else:
            return None

        thumbnail_path = self.thumbnail_dir / f"{source.stem}_thumb.jpg"
        cmd = [
            self.ffmpeg_path, "-y", *seek,
            "-i", str(source),
            "-frames:v", "1",
            "-vf", thumbnail_filter(),
            str(thumbnail_path),
        ]
        try:
            self._run(cmd)
        except MediaToolError as e:
            logger.warning(f"Failed to generate thumbnail for {file_path}: {e}")
            return None

        if not thumbnail_path.exists():
            # 视频不足 1 秒时 ffmpeg 不输出任何帧
            logger.warning(f"ffmpeg produced no thumbnail for {file_path}")
            return None

        logger.info(f"Generated thumbnail: {thumbnail_path}")
        return str(thumbnail_path)

    def extract_metadata(self, file_path: str, mime_type: str) -> Dict[str, Any]:
        """按 MIME 类型提取元数据，失败时返回空字典"""
        mime_type = (mime_type or "").lower()
        try:
            if mime_type.startswith(("video/", "audio/")):
                return self._ffprobe(file_path, show_format=True)
            if mime_type.startswith("image/"):
                return self._ffprobe(file_path, show_format=False)
            if mime_type.startswith("text/"):
                return self._text_metadata(file_path)
        except (MediaToolError, ValueError, OSError) as e:
            logger.warning(f"Failed to extract metadata for {file_path}: {e}")
        return {}

    def _ffprobe(self, file_path: str, show_format: bool) -> Dict[str, Any]:
        cmd = [self.ffprobe_path, "-v", "quiet", "-print_format", "json"]
        if show_format:
            cmd.append("-show_format")
        cmd += ["-show_streams", file_path]
        return parse_ffprobe_output(json.loads(self._run(cmd) or "{}"))

    def _text_metadata(self, file_path: str) -> Dict[str, Any]:
        text = Path(file_path).read_text(encoding="utf-8", errors="replace")
        return {
            "line_count": len(text.split("\n")),
            "character_count": len(text),
            "word_count": len(text.split()),
        }
