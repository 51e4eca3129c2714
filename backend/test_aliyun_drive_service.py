"""
测试阿里云盘服务：路径处理、配置管理与文件操作
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from database.drive_config_db import DriveConfigDatabase
from models.schemas import (
    ConnectionTestRequest,
    CreateAliyunDriveConfigRequest,
    CreateDirectoryRequest,
    DeleteItemsRequest,
    ListFilesQuery,
    MoveItemRequest,
    UpdateAliyunDriveConfigRequest,
    UploadFileRequest,
)
from services.aliyun_drive_service import (
    PasswordDecryptionError,
    get_aliyun_drive_service,
    join_path,
    relative_to_base,
)
from services.webdav_client import WebDavError


def _entry(href, name, is_directory=False, size=None):
    return {
        "href": href,
        "name": name,
        "is_directory": is_directory,
        "size": size,
        "content_type": None if is_directory else "video/mp4",
        "last_modified": datetime(2025, 7, 15),
        "etag": None,
    }


@pytest.fixture
def service():
    return get_aliyun_drive_service()


@pytest.fixture
def config(service, user):
    return service.create_config(user["id"], CreateAliyunDriveConfigRequest(
        webdav_url="https://openapi.alipan.com/dav/",
        username="drive-user",
        password="drive-pass",
        base_path="/media",
    ))


@pytest.fixture
def webdav():
    """替换 WebDavClient，with 语句返回同一个 mock"""
    with patch("services.aliyun_drive_service.WebDavClient") as client_cls:
        client = client_cls.return_value
        client.__enter__.return_value = client
        yield client


def test_join_path():
    assert join_path("/", "/") == "/"
    assert join_path("/media", "clips/", "a.mp4") == "/media/clips/a.mp4"
    assert join_path("media", "/clips") == "/media/clips"
    assert join_path("/media", "./a.mp4") == "/media/a.mp4"

    with pytest.raises(ValueError):
        join_path("/media", "../secret")


def test_relative_to_base():
    assert relative_to_base("/media/clips/a.mp4", "/media") == "/clips/a.mp4"
    assert relative_to_base("/media/", "/media") == "/"
    assert relative_to_base("/other/a.mp4", "/media") == "/other/a.mp4"
    assert relative_to_base("/a.mp4", "/") == "/a.mp4"


def test_create_config_encrypts_password(service, user, config):
    assert config["user_id"] == user["id"]
    assert config["webdav_url"] == "https://openapi.alipan.com/dav"
    assert config["timeout"] == 30000
    assert config["base_path"] == "/media"
    assert "drive-pass" not in config["encrypted_password"]
    assert service.get_decrypted_password(config) == "drive-pass"
    assert "encrypted_password" not in service.to_public(config)

    # 每个用户只能有一个配置
    with pytest.raises(ValueError):
        service.create_config(user["id"], CreateAliyunDriveConfigRequest(
            webdav_url="https://example.com/dav", username="u", password="p"
        ))


def test_update_config_only_changes_provided_fields(service, config):
    updated = service.update_config(config, UpdateAliyunDriveConfigRequest(display_name="我的云盘", password="new-pass"))

    assert updated["display_name"] == "我的云盘"
    assert updated["username"] == "drive-user"
    assert updated["base_path"] == "/media"
    assert updated["last_sync_at"] is not None
    assert service.get_decrypted_password(updated) == "new-pass"


def test_decrypt_failure(service, config):
    config["encrypted_password"] = '{"encrypted_text": "broken", "salt": "AAAA"}'

    with pytest.raises(PasswordDecryptionError, match="Failed to decrypt password"):
        service.get_decrypted_password(config)


def test_list_files_sorts_filters_and_paginates(service, config, webdav):
    webdav.propfind.return_value = [
        _entry("/media/", "media", is_directory=True),
        _entry("/media/b.mp4", "b.mp4", size=10),
        _entry("/media/Clips/", "Clips", is_directory=True),
        _entry("/media/a.mp4", "a.mp4", size=20),
        _entry("/media/intro-clip.mp4", "intro-clip.mp4", size=30),
    ]

    result = service.list_files(config, ListFilesQuery(path="/", limit=2))
    webdav.propfind.assert_called_with("/media", depth=1)

    assert result["total"] == 4
    assert result["has_more"] is True
    assert [f["name"] for f in result["files"]] == ["Clips", "a.mp4"]
    assert result["files"][0]["path"] == "/Clips"
    assert result["files"][1]["path"] == "/a.mp4"

    result = service.list_files(config, ListFilesQuery(path="/", search="CLIP"))
    assert result["total"] == 2
    assert result["has_more"] is False
    assert [f["name"] for f in result["files"]] == ["Clips", "intro-clip.mp4"]
    assert config["last_sync_at"] is not None


def test_list_files_transport_error(service, config, webdav):
    webdav.propfind.side_effect = WebDavError("timed out")

    with pytest.raises(ValueError, match="Failed to list files"):
        service.list_files(config, ListFilesQuery(path="/"))


def test_upload_respects_overwrite(service, config, webdav):
    webdav.exists.return_value = True

    result = service.upload_file(config, UploadFileRequest(file_name="a.mp4", path="/clips"), b"data")
    assert result["success"] is False
    assert "already exists" in result["error"]
    webdav.put.assert_not_called()

    result = service.upload_file(config, UploadFileRequest(file_name="a.mp4", path="/clips", overwrite=True), b"data")
    assert result["success"] is True
    assert result["path"] == "/clips/a.mp4"
    webdav.put.assert_called_once_with("/media/clips/a.mp4", b"data", "application/octet-stream")


def test_delete_items_reports_each_path(service, config, webdav):
    webdav.delete.side_effect = [None, WebDavError("404 Not Found", status_code=404), None]

    result = service.delete_items(config, DeleteItemsRequest(paths=["/a.mp4", "/missing.mp4", "/c.mp4"]))

    assert result["success"] is True
    assert result["failed"] == 1
    parts = result["message"].split("; ")
    assert parts[0] == "Deleted: /a.mp4"
    assert parts[1].startswith("Failed to delete /missing.mp4")
    assert parts[2] == "Deleted: /c.mp4"


def test_move_item(service, config, webdav):
    result = service.move_item(config, MoveItemRequest(source_path="/a.mp4", target_path="/archive/a.mp4"))

    assert result == {"success": True, "message": "Item moved successfully", "path": "/archive/a.mp4"}
    webdav.move.assert_called_once_with("/media/a.mp4", "/media/archive/a.mp4", overwrite=False)

    webdav.copy.side_effect = WebDavError("412 Precondition Failed", status_code=412)
    result = service.copy_item(config, MoveItemRequest(source_path="/a.mp4", target_path="/b.mp4"))
    assert result["success"] is False
    assert result["error"].startswith("Failed to copy item")


def test_test_connection(service, webdav):
    request = ConnectionTestRequest(webdav_url="https://example.com/dav", username="u", password="p")

    result = service.test_connection(request)
    assert result["success"] is True
    assert result["response_time"] >= 0
    webdav.propfind.assert_called_with("/", depth=0)

    webdav.propfind.side_effect = WebDavError("401 Unauthorized", status_code=401)
    result = service.test_connection(request)
    assert result["success"] is False
    assert "Authentication failed" in result["message"]

    webdav.propfind.side_effect = WebDavError("connection refused")
    result = service.test_connection(request)
    assert result["success"] is False
    assert result["error"] == "connection refused"


def test_update_config_is_active(service, config):
    updated = service.update_config(config, UpdateAliyunDriveConfigRequest(is_active=False))

    assert updated["is_active"] is False
    assert updated["display_name"] is None

    # is_active 未提供时保持不变
    updated = service.update_config(updated, UpdateAliyunDriveConfigRequest(display_name="备份盘"))
    assert updated["is_active"] is False


@pytest.mark.parametrize("name", ["", "   ", ".", "..", "a/b", "/a.mp4", "a\\b"])
def test_item_names_must_be_single_segment(name):
    with pytest.raises(ValueError):
        UploadFileRequest(file_name=name, path="/clips")
    with pytest.raises(ValueError):
        CreateDirectoryRequest(path="/clips", directory_name=name)


def test_create_directory(service, config, webdav):
    result = service.create_directory(config, CreateDirectoryRequest(path="/clips", directory_name="2025"))

    assert result == {"success": True, "message": "Directory created successfully", "path": "/clips/2025"}
    webdav.mkcol.assert_called_once_with("/media/clips/2025")

    webdav.mkcol.side_effect = WebDavError("405 Method Not Allowed", status_code=405)
    result = service.create_directory(config, CreateDirectoryRequest(path="/clips", directory_name="2025"))
    assert result["success"] is False
    assert result["error"].startswith("Failed to create directory")


def test_duplicate_config_insert_raises_value_error(user, config):
    # 直接写库，模拟并发请求同时通过了存在性检查
    with pytest.raises(ValueError, match="already exists"):
        DriveConfigDatabase().create_config({
            "user_id": user["id"],
            "webdav_url": "https://example.com/dav",
            "username": "u",
            "encrypted_password": "{}",
            "timeout": 30000,
        })

    assert DriveConfigDatabase().get_by_user(user["id"])["id"] == config["id"]
