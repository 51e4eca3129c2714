"""
WebDAV 客户端
基于 requests.Session，支持 PROPFIND / GET / PUT / MKCOL / DELETE / MOVE / COPY
"""

from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote, unquote, urlparse
import logging
import xml.etree.ElementTree as ET

import requests

from config import WEBDAV_USER_AGENT

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:">
  <d:prop>
    <d:displayname/>
    <d:getcontentlength/>
    <d:getcontenttype/>
    <d:getlastmodified/>
    <d:getetag/>
    <d:resourcetype/>
  </d:prop>
</d:propfind>"""


class WebDavError(Exception):
    """WebDAV 请求失败（status_code 为服务器返回的 HTTP 状态，网络错误时为 None）"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def parse_multistatus(xml_data: bytes) -> List[Dict[str, Any]]:
    """
    解析 207 Multi-Status 响应

    Returns:
        每个 response 一项：href（已解码的 URL 路径）、name、is_directory、
        size、content_type、last_modified、etag
    """
    try:
        root = ET.fromstring(xml_data)
    except ET.ParseError as e:
        raise WebDavError(f"Invalid PROPFIND response: {e}")

    entries = []
    for response in root.iter(f"{DAV_NS}response"):
        href_el = response.find(f"{DAV_NS}href")
        if href_el is None or not href_el.text:
            continue
        href = unquote(urlparse(href_el.text.strip()).path)

        props = {}
        for propstat in response.findall(f"{DAV_NS}propstat"):
            status = propstat.findtext(f"{DAV_NS}status", default="")
            if status and " 200 " not in f"{status} ":
                continue
            prop = propstat.find(f"{DAV_NS}prop")
            if prop is None:
                continue
            for child in prop:
                props[child.tag] = child

        resourcetype = props.get(f"{DAV_NS}resourcetype")
        is_directory = resourcetype is not None and resourcetype.find(f"{DAV_NS}collection") is not None

        size = None
        length = _prop_text(props, "getcontentlength")
        if length and length.isdigit():
            size = int(length)

        last_modified = None
        modified = _prop_text(props, "getlastmodified")
        if modified:
            try:
                last_modified = parsedate_to_datetime(modified)
            except (TypeError, ValueError):
                logger.warning(f"Unparseable getlastmodified: {modified}")

        name = _prop_text(props, "displayname") or href.rstrip("/").rsplit("/", 1)[-1]

        entries.append({
            "href": href,
            "name": name,
            "is_directory": is_directory,
            "size": size,
            "content_type": _prop_text(props, "getcontenttype"),
            "last_modified": last_modified,
            "etag": _prop_text(props, "getetag"),
        })

    return entries


def _prop_text(props: Dict[str, ET.Element], name: str) -> Optional[str]:
    element = props.get(f"{DAV_NS}{name}")
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


class WebDavClient:
    """单个 WebDAV 服务的客户端"""

    def __init__(self, base_url: str, username: str, password: str, timeout_ms: int,
                 user_agent: str = WEBDAV_USER_AGENT):
        self.base_url = base_url.rstrip("/")
        # 服务根路径（如 https://openapi.alipan.com/dav 中的 /dav）
        self.root_path = urlparse(self.base_url).path.rstrip("/")
        self.timeout = timeout_ms / 1000

        self.session = requests.Session()
        self.session.auth = (username, password)
        self.session.headers.update({"User-Agent": user_agent})

    def url_for(self, path: str) -> str:
        return f"{self.base_url}{quote(path)}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self.url_for(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise WebDavError(str(e))

        if response.status_code >= 400:
            message = f"{method} {path} returned {response.status_code} {response.reason or ''}".strip()
            response.close()
            raise WebDavError(message, status_code=response.status_code)
        return response

    def propfind(self, path: str, depth: int = 1) -> List[Dict[str, Any]]:
        """列出资源属性，返回项的 href 已去除服务根路径"""
        response = self._request(
            "PROPFIND", path,
            data=PROPFIND_BODY.encode("utf-8"),
            headers={"Depth": str(depth), "Content-Type": "application/xml; charset=utf-8"},
        )
        entries = parse_multistatus(response.content)
        for entry in entries:
            href = entry["href"]
            if self.root_path and href.startswith(self.root_path):
                href = href[len(self.root_path):]
            entry["href"] = href or "/"
        return entries

    def exists(self, path: str) -> bool:
        try:
            self.propfind(path, depth=0)
            return True
        except WebDavError as e:
            if e.status_code == 404:
                return False
            raise

    def get(self, path: str) -> requests.Response:
        """流式下载，调用方负责关闭响应"""
        return self._request("GET", path, stream=True)

    def put(self, path: str, content: bytes, content_type: str = "application/octet-stream") -> None:
        self._request("PUT", path, data=content, headers={"Content-Type": content_type}).close()

    def mkcol(self, path: str) -> None:
        self._request("MKCOL", path).close()

    def delete(self, path: str) -> None:
        self._request("DELETE", path).close()

    def move(self, source: str, target: str, overwrite: bool = False) -> None:
        self._request("MOVE", source, headers=self._destination_headers(target, overwrite)).close()

    def copy(self, source: str, target: str, overwrite: bool = False) -> None:
        self._request("COPY", source, headers=self._destination_headers(target, overwrite)).close()

    def _destination_headers(self, target: str, overwrite: bool) -> Dict[str, str]:
        return {"Destination": self.url_for(target), "Overwrite": "T" if overwrite else "F"}

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
