"""
测试阿里云盘 API
"""

import inspect
import uuid
from unittest.mock import MagicMock, patch

import pytest

from api import aliyun_drive, assets
from api.aliyun_drive import content_disposition
from database.drive_config_db import DriveConfigDatabase

CONFIG_BODY = {
    "webdav_url": "https://openapi.alipan.com/dav",
    "username": "drive-user",
    "password": "drive-pass",
    "base_path": "/media",
}


@pytest.fixture
def webdav():
    with patch("services.aliyun_drive_service.WebDavClient") as client_cls:
        client = client_cls.return_value
        client.__enter__.return_value = client
        yield client


def test_missing_user_header(client):
    response = client.get("/api/aliyun-drive/config")

    assert response.status_code == 406
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == "NOT_ACCEPTABLE"
    assert body["error"]["statusCode"] == 406
    assert body["error"]["path"] == "/api/aliyun-drive/config"


def test_unknown_user(client):
    response = client.get("/api/aliyun-drive/config", headers={"X-User-Id": str(uuid.uuid4())})
    assert response.status_code == 401


def test_config_lifecycle(client, headers):
    assert client.get("/api/aliyun-drive/config", headers=headers).json() is None

    response = client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)
    assert response.status_code == 201
    config = response.json()
    assert config["username"] == "drive-user"
    assert config["timeout"] == 30000
    assert "password" not in config
    assert "encrypted_password" not in config

    # 重复创建
    response = client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)
    assert response.status_code == 409

    response = client.get("/api/aliyun-drive/config", headers=headers)
    assert response.json()["id"] == config["id"]

    response = client.put(f"/api/aliyun-drive/config/{config['id']}", json={"display_name": "工作盘"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["display_name"] == "工作盘"
    assert response.json()["base_path"] == "/media"

    response = client.post(f"/api/aliyun-drive/config/{config['id']}/sync", headers=headers)
    assert response.status_code == 200
    assert response.json()["last_sync_at"] is not None

    assert client.delete(f"/api/aliyun-drive/config/{config['id']}", headers=headers).status_code == 204
    assert client.get("/api/aliyun-drive/config", headers=headers).json() is None


def test_config_of_other_user_not_found(client, headers):
    response = client.put(f"/api/aliyun-drive/config/{uuid.uuid4()}", json={"display_name": "x"}, headers=headers)
    assert response.status_code == 404


def test_invalid_timeout_rejected(client, headers):
    response = client.post("/api/aliyun-drive/config", json={**CONFIG_BODY, "timeout": 100}, headers=headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_files_without_config(client, headers):
    response = client.get("/api/aliyun-drive/files", headers=headers)

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "WebDAV config not found"


def test_upload_without_file(client, headers):
    response = client.post("/api/aliyun-drive/files/upload", data={"path": "/"}, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "No file provided"


def test_list_and_download(client, headers, webdav):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)
    webdav.propfind.return_value = [
        {"href": "/media/", "name": "media", "is_directory": True, "size": None,
         "content_type": None, "last_modified": None, "etag": None},
        {"href": "/media/a.mp4", "name": "a.mp4", "is_directory": False, "size": 10,
         "content_type": "video/mp4", "last_modified": None, "etag": None},
    ]

    response = client.get("/api/aliyun-drive/files", params={"path": "/"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["files"] == [{
        "name": "a.mp4", "path": "/a.mp4", "is_directory": False, "size": 10,
        "content_type": "video/mp4", "last_modified": None, "etag": None,
    }]
    assert response.headers["Cache-Control"] == "private, max-age=10"

    download = MagicMock()
    download.headers = {"Content-Type": "video/mp4"}
    download.iter_content.return_value = [b"abc", b"def"]
    webdav.get.return_value = download

    response = client.get("/api/aliyun-drive/files/download", params={"file_path": "/视频.mp4"}, headers=headers)
    assert response.status_code == 200
    assert response.content == b"abcdef"
    assert response.headers["content-type"] == "video/mp4"
    assert "filename*=UTF-8''%E8%A7%86%E9%A2%91.mp4" in response.headers["content-disposition"]
    assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
    webdav.get.assert_called_once_with("/media/视频.mp4")


def test_delete_items(client, headers, webdav):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)

    response = client.request("DELETE", "/api/aliyun-drive/items", json={"paths": ["/a.mp4", "/b.mp4"]}, headers=headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["failed"] == 0
    assert webdav.delete.call_count == 2


def test_content_disposition():
    assert content_disposition("report.pdf") == 'attachment; filename="report.pdf"'
    assert content_disposition('a"b.txt') == 'attachment; filename="ab.txt"'

    header = content_disposition("报告.pdf")
    assert header.startswith('attachment; filename=".pdf"')
    assert header.endswith("filename*=UTF-8''%E6%8A%A5%E5%91%8A.pdf")


def test_upload_routes_run_in_threadpool():
    # 同步路由由 FastAPI 放到线程池执行，不阻塞事件循环
    assert not inspect.iscoroutinefunction(aliyun_drive.upload_file)
    assert not inspect.iscoroutinefunction(assets.upload_asset)


def test_upload_file(client, headers, webdav):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)
    webdav.exists.return_value = False

    # 未指定 file_name 时使用上传文件名
    response = client.post(
        "/api/aliyun-drive/files/upload",
        files={"file": ("clip.mp4", b"video-bytes", "video/mp4")},
        data={"path": "/clips"},
        headers=headers
    )
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.json()["path"] == "/clips/clip.mp4"
    webdav.put.assert_called_once_with("/media/clips/clip.mp4", b"video-bytes", "video/mp4")

    response = client.post(
        "/api/aliyun-drive/files/upload",
        files={"file": ("clip.mp4", b"video-bytes", "video/mp4")},
        data={"path": "/clips", "file_name": "renamed.mp4", "overwrite": "true"},
        headers=headers
    )
    assert response.json()["path"] == "/clips/renamed.mp4"
    webdav.put.assert_called_with("/media/clips/renamed.mp4", b"video-bytes", "video/mp4")


@pytest.mark.parametrize("file_name", [".", "..", "sub/clip.mp4"])
def test_upload_file_rejects_invalid_name(client, headers, webdav, file_name):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)
    webdav.exists.return_value = False

    response = client.post(
        "/api/aliyun-drive/files/upload",
        files={"file": ("clip.mp4", b"video-bytes", "video/mp4")},
        data={"path": "/clips", "file_name": file_name},
        headers=headers
    )

    assert response.status_code == 400
    webdav.put.assert_not_called()


def test_create_directory(client, headers, webdav):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)

    response = client.post("/api/aliyun-drive/directories", json={"path": "/clips", "directory_name": "2025"},
                           headers=headers)
    assert response.status_code == 200
    assert response.json()["path"] == "/clips/2025"
    webdav.mkcol.assert_called_once_with("/media/clips/2025")

    for name in (".", "..", "a/b"):
        response = client.post("/api/aliyun-drive/directories", json={"path": "/clips", "directory_name": name},
                               headers=headers)
        assert response.status_code == 422
    assert webdav.mkcol.call_count == 1


def test_move_and_copy(client, headers, webdav):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)

    response = client.post("/api/aliyun-drive/items/move", json={
        "source_path": "/a.mp4", "target_path": "/archive/a.mp4"
    }, headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == "Item moved successfully"
    webdav.move.assert_called_once_with("/media/a.mp4", "/media/archive/a.mp4", overwrite=False)

    response = client.post("/api/aliyun-drive/items/copy", json={
        "source_path": "/a.mp4", "target_path": "/b.mp4", "overwrite": True
    }, headers=headers)
    assert response.status_code == 200
    assert response.json()["path"] == "/b.mp4"
    webdav.copy.assert_called_once_with("/media/a.mp4", "/media/b.mp4", overwrite=True)

    response = client.post("/api/aliyun-drive/items/move", json={
        "source_path": "/a.mp4", "target_path": "/../etc"
    }, headers=headers)
    assert response.status_code == 400


def test_deactivate_config(client, headers, user):
    config = client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers).json()
    assert config["is_active"] is True

    response = client.put(f"/api/aliyun-drive/config/{config['id']}", json={"is_active": False}, headers=headers)
    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert client.get(f"/api/users/{user['id']}/aliyun-drive-status").json() == {"has_config": False}


def test_delete_user_removes_drive_config(client, headers, user):
    client.post("/api/aliyun-drive/config", json=CONFIG_BODY, headers=headers)
    assert DriveConfigDatabase().get_by_user(user["id"]) is not None

    assert client.delete(f"/api/users/{user['id']}").status_code == 204
    assert DriveConfigDatabase().get_by_user(user["id"]) is None
