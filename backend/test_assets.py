"""
测试素材服务与素材 API
"""

import json
import os
import subprocess
import uuid
from unittest.mock import MagicMock, patch

import pytest

from models.schemas import ImportFromDriveRequest
from services.asset_service import get_asset_service, is_mime_allowed


def _upload(client, headers, name="clip.mp4", content=b"video-bytes", mime="video/mp4",
            asset_type="background_video", tags=None, description=None):
    data = {"asset_type": asset_type}
    if tags is not None:
        data["tags"] = tags
    if description is not None:
        data["description"] = description
    return client.post(
        "/api/assets/upload",
        files={"file": (name, content, mime)},
        data=data,
        headers=headers
    )


def test_is_mime_allowed():
    allowed = ["image/*", "audio/mpeg", "text/plain"]

    assert is_mime_allowed("image/png", allowed)
    assert is_mime_allowed("IMAGE/JPEG", allowed)
    assert is_mime_allowed("audio/mpeg", allowed)
    assert not is_mime_allowed("audio/wav", allowed)
    assert not is_mime_allowed("application/pdf", allowed)
    assert not is_mime_allowed("", allowed)


def test_upload_asset(client, headers, user):
    response = _upload(client, headers, tags="nature, rain ,", description="雨声素材")

    assert response.status_code == 201
    asset = response.json()
    assert asset["user_id"] == user["id"]
    assert asset["original_name"] == "clip.mp4"
    assert asset["file_name"].endswith(".mp4")
    assert asset["file_size"] == len(b"video-bytes")
    assert asset["upload_source"] == "local"
    assert asset["tags"] == ["nature", "rain"]
    assert asset["metadata"]["extension"] == ".mp4"
    assert len(asset["metadata"]["sha256"]) == 64
    assert os.path.exists(asset["file_path"])
    # 测试环境没有 ffmpeg，缩略图与媒体元数据为空
    assert asset["thumbnail_path"] is None
    assert "duration" not in asset["metadata"]


def test_upload_rejects_disallowed_type(client, headers):
    response = _upload(client, headers, name="doc.pdf", mime="application/pdf")

    assert response.status_code == 400
    assert "not allowed" in response.json()["error"]["message"]


def test_upload_rejects_unknown_asset_type(client, headers):
    response = _upload(client, headers, asset_type="hologram")
    assert response.status_code == 422


def test_search_by_tag_and_keyword(client, headers):
    _upload(client, headers, name="forest.mp3", mime="audio/mpeg", asset_type="bgm_audio", tags="nature,calm")
    _upload(client, headers, name="city.mp3", mime="audio/mpeg", asset_type="bgm_audio", tags="urban")
    _upload(client, headers, name="sky.png", mime="image/png", asset_type="background_image",
            description="Blue sky at dawn")

    result = client.get("/api/assets", params={"tags": "calm,urban"}, headers=headers).json()
    assert result["total"] == 2
    assert {a["original_name"] for a in result["data"]} == {"forest.mp3", "city.mp3"}

    result = client.get("/api/assets", params={"search_keyword": "DAWN"}, headers=headers).json()
    assert [a["original_name"] for a in result["data"]] == ["sky.png"]

    # 关键词也匹配完整标签
    result = client.get("/api/assets", params={"search_keyword": "Urban"}, headers=headers).json()
    assert [a["original_name"] for a in result["data"]] == ["city.mp3"]

    result = client.get("/api/assets", params={"asset_type": "bgm_audio", "page_size": 1}, headers=headers).json()
    assert result["total"] == 2
    assert result["total_pages"] == 2
    assert len(result["data"]) == 1

    result = client.get("/api/assets", params={"sort_by": "original_name", "sort_order": "ASC"}, headers=headers).json()
    names = [a["original_name"] for a in result["data"]]
    assert names == sorted(names)


def test_assets_are_scoped_to_owner(client, headers):
    asset = _upload(client, headers).json()

    other = client.post("/api/users", json={
        "email": f"other-{uuid.uuid4().hex[:8]}@example.com",
        "username": f"other-{uuid.uuid4().hex[:8]}",
        "password": "password123",
    }).json()
    other_headers = {"X-User-Id": other["id"]}

    assert client.get(f"/api/assets/{asset['id']}", headers=other_headers).status_code == 404
    assert client.get("/api/assets", headers=other_headers).json()["total"] == 0

    response = client.post("/api/assets/batch", json={
        "asset_ids": [asset["id"]], "operation": "delete"
    }, headers=other_headers)
    assert response.status_code == 403


def test_update_and_delete_asset(client, headers):
    asset = _upload(client, headers).json()

    response = client.put(f"/api/assets/{asset['id']}", json={"tags": ["intro"], "asset_type": "background_image"},
                          headers=headers)
    assert response.status_code == 200
    assert response.json()["tags"] == ["intro"]
    assert response.json()["asset_type"] == "background_image"
    assert response.json()["description"] is None

    assert client.delete(f"/api/assets/{asset['id']}", headers=headers).status_code == 204
    assert not os.path.exists(asset["file_path"])
    assert client.get(f"/api/assets/{asset['id']}", headers=headers).status_code == 404
    assert client.delete(f"/api/assets/{asset['id']}", headers=headers).status_code == 404


def test_batch_operations(client, headers):
    first = _upload(client, headers).json()
    second = _upload(client, headers).json()
    ids = [first["id"], second["id"], first["id"]]

    response = client.post("/api/assets/batch", json={
        "asset_ids": ids, "operation": "update_tags", "tags": ["batch"]
    }, headers=headers)
    assert response.json() == {"success": 2, "failed": 0}
    assert client.get(f"/api/assets/{second['id']}", headers=headers).json()["tags"] == ["batch"]

    response = client.post("/api/assets/batch", json={
        "asset_ids": ids, "operation": "delete"
    }, headers=headers)
    assert response.json() == {"success": 2, "failed": 0}
    assert client.get("/api/assets", headers=headers).json()["total"] == 0


@pytest.mark.parametrize("body", [
    {"asset_ids": [], "operation": "delete"},
    {"asset_ids": ["x"], "operation": "archive"},
])
def test_batch_validation(client, headers, body):
    assert client.post("/api/assets/batch", json=body, headers=headers).status_code == 422


class FakeDrive:
    """按块返回内容的云盘下载，记录读取了多少块、是否关闭"""

    def __init__(self, chunks, filename="clip.mp4", content_type="video/mp4"):
        self.chunks = chunks
        self.filename = filename
        self.content_type = content_type
        self.consumed = 0
        self.closed = False

    def download_file(self, config, query):
        self.query = query
        return self._stream(), self.filename, self.content_type

    def _stream(self):
        try:
            for chunk in self.chunks:
                self.consumed += 1
                yield chunk
        finally:
            self.closed = True


def _import_request(**kwargs):
    return ImportFromDriveRequest(**{"file_path": "/clips/clip.mp4", "asset_type": "background_video", **kwargs})


def test_import_from_aliyun_drive(user):
    drive = FakeDrive([b"abc", b"def"], content_type="application/octet-stream")

    asset = get_asset_service().import_from_aliyun_drive(
        user["id"], {"id": "cfg"}, _import_request(tags=["drive"]), drive
    )

    assert drive.query.file_path == "/clips/clip.mp4"
    assert drive.closed
    assert asset["upload_source"] == "aliyun_drive"
    assert asset["original_name"] == "clip.mp4"
    assert asset["mime_type"] == "video/mp4"
    assert asset["file_size"] == 6
    assert asset["tags"] == ["drive"]
    assert asset["metadata"]["source_path"] == "/clips/clip.mp4"
    with open(asset["file_path"], "rb") as f:
        assert f.read() == b"abcdef"


def test_import_stops_reading_once_too_large(user):
    service = get_asset_service()
    drive = FakeDrive([b"x" * 4] * 100)
    before = set(os.listdir(service.upload_dir))

    with patch("services.asset_service.MAX_FILE_SIZE", 10):
        with pytest.raises(ValueError, match="File too large"):
            service.import_from_aliyun_drive(user["id"], {"id": "cfg"}, _import_request(), drive)

    assert drive.consumed == 3
    assert drive.closed
    assert set(os.listdir(service.upload_dir)) == before


def test_import_rejects_disallowed_type(user):
    drive = FakeDrive([b"%PDF"], filename="doc.pdf", content_type="application/pdf")

    with pytest.raises(ValueError, match="not allowed"):
        get_asset_service().import_from_aliyun_drive(user["id"], {"id": "cfg"}, _import_request(), drive)

    assert drive.consumed == 0
    assert drive.closed


def test_import_api(client, headers):
    response = client.post("/api/assets/import/aliyun-drive", json={
        "file_path": "/a.mp4", "asset_type": "background_video"
    }, headers=headers)
    assert response.status_code == 404

    client.post("/api/aliyun-drive/config", json={
        "webdav_url": "https://openapi.alipan.com/dav",
        "username": "drive-user",
        "password": "drive-pass",
        "base_path": "/media",
    }, headers=headers)

    with patch("services.aliyun_drive_service.WebDavClient") as client_cls:
        webdav = client_cls.return_value
        download = MagicMock()
        download.headers = {"Content-Type": "audio/mpeg"}
        download.iter_content.return_value = [b"ID3", b"-audio"]
        webdav.get.return_value = download

        response = client.post("/api/assets/import/aliyun-drive", json={
            "file_path": "/music/rain.mp3", "asset_type": "bgm_audio", "description": "雨声"
        }, headers=headers)

    assert response.status_code == 201
    asset = response.json()
    assert asset["upload_source"] == "aliyun_drive"
    assert asset["original_name"] == "rain.mp3"
    assert asset["mime_type"] == "audio/mpeg"
    assert asset["file_size"] == len(b"ID3-audio")
    assert asset["description"] == "雨声"
    webdav.get.assert_called_once_with("/media/music/rain.mp3")
    download.close.assert_called_once()

    assets = client.get("/api/assets", params={"asset_type": "bgm_audio"}, headers=headers).json()
    assert [a["id"] for a in assets["data"]] == [asset["id"]]


FFPROBE_OUTPUT = {
    "format": {"duration": "12.5", "bit_rate": "800000", "format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
    "streams": [
        {"codec_type": "video", "codec_name": "h264", "width": 1080, "height": 1920, "r_frame_rate": "30/1"},
        {"codec_type": "audio", "codec_name": "aac", "channels": 2, "sample_rate": "44100"},
    ],
}


def _fake_media_tools(cmd, **kwargs):
    if "-print_format" in cmd:
        return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(FFPROBE_OUTPUT), stderr="")
    with open(cmd[-1], "wb") as f:
        f.write(b"jpeg")
    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def test_upload_generates_thumbnail_and_metadata(client, headers):
    with patch("services.media_metadata_service.subprocess.run", side_effect=_fake_media_tools):
        asset = _upload(client, headers).json()

    assert asset["thumbnail_path"].endswith("_thumb.jpg")
    assert os.path.exists(asset["thumbnail_path"])
    metadata = asset["metadata"]
    assert metadata["duration"] == 12.5
    assert metadata["width"] == 1080
    assert metadata["height"] == 1920
    assert metadata["codec"] == "h264"
    assert metadata["fps"] == 30.0
    assert metadata["channels"] == 2
    assert metadata["sample_rate"] == 44100
    assert metadata["extension"] == ".mp4"

    assert client.delete(f"/api/assets/{asset['id']}", headers=headers).status_code == 204
    assert not os.path.exists(asset["thumbnail_path"])


def test_import_generates_thumbnail(user):
    drive = FakeDrive([b"png-bytes"], filename="sky.png", content_type="image/png")

    with patch("services.media_metadata_service.subprocess.run", side_effect=_fake_media_tools):
        asset = get_asset_service().import_from_aliyun_drive(
            user["id"], {"id": "cfg"}, _import_request(file_path="/sky.png", asset_type="background_image"), drive
        )

    assert os.path.exists(asset["thumbnail_path"])
    assert asset["metadata"]["width"] == 1080
    assert asset["metadata"]["source_path"] == "/sky.png"


def test_upload_text_metadata(client, headers):
    asset = _upload(client, headers, name="script.txt", content=b"hello world\nsecond line", mime="text/plain",
                    asset_type="text_content").json()

    assert asset["thumbnail_path"] is None
    assert asset["metadata"]["line_count"] == 2
    assert asset["metadata"]["word_count"] == 4
    assert asset["metadata"]["character_count"] == len("hello world\nsecond line")
