"""
Google Drive v3 client for the documents screen. Every call carries a bearer token from
the TokenManager; non-2xx answers are raised as DriveError with status and body, uninterpreted.
"""
import json
import logging
from typing import Awaitable, Callable

import httpx

from manager_web.config import DRIVE_API_URL, DRIVE_ROOT_FOLDER_ID, DRIVE_UPLOAD_URL
from manager_web.errors import DriveError

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_FIELDS = "id,name,mimeType,size,createdTime,modifiedTime,webViewLink,webContentLink,parents"
LIST_FIELDS = f"nextPageToken,files({FILE_FIELDS})"


def _quote(value: str) -> str:
    # Drive query string literals use single quotes with backslash escapes
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        access_token: Callable[[], Awaitable[str]],
        *,
        api_url: str = DRIVE_API_URL,
        upload_url: str = DRIVE_UPLOAD_URL,
    ):
        self.http = http
        self.access_token = access_token
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        token = await self.access_token()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {token}"
        try:
            r = await self.http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Drive %s %s failed: %s", method, url, e)
            raise DriveError(None, str(e)) from e
        if r.status_code >= 400:
            logger.warning("Drive %s %s -> %s", method, url, r.status_code)
            raise DriveError(r.status_code, r.text)
        return r

    async def list_files(self, folder_id: str = DRIVE_ROOT_FOLDER_ID, page_size: int = 100) -> list[dict]:
        """Non-trashed children of folder_id, folders first then by name."""
        params = {
            "q": f"'{_quote(folder_id)}' in parents and trashed=false",
            "fields": LIST_FIELDS,
            "orderBy": "folder,name",
            "pageSize": str(page_size),
        }
        r = await self._request("GET", f"{self.api_url}/files", params=params)
        return r.json().get("files", [])

    async def search_files(self, text: str, page_size: int = 50) -> list[dict]:
        params = {
            "q": f"name contains '{_quote(text)}' and trashed=false",
            "fields": LIST_FIELDS,
            "orderBy": "modifiedTime desc",
            "pageSize": str(page_size),
        }
        r = await self._request("GET", f"{self.api_url}/files", params=params)
        return r.json().get("files", [])

    async def get_file(self, file_id: str) -> dict:
        r = await self._request("GET", f"{self.api_url}/files/{file_id}", params={"fields": FILE_FIELDS})
        return r.json()

    async def create_folder(self, name: str, parent_id: str = DRIVE_ROOT_FOLDER_ID) -> dict:
        body = {"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]}
        r = await self._request(
            "POST", f"{self.api_url}/files", params={"fields": "id,name,mimeType,createdTime,modifiedTime"}, json=body
        )
        logger.info("Created drive folder %s", name)
        return r.json()

    async def upload_file(
        self,
        name: str,
        content: bytes,
        mime_type: str = "application/octet-stream",
        parent_id: str = DRIVE_ROOT_FOLDER_ID,
    ) -> dict:
        """Multipart upload: JSON metadata part followed by the file bytes."""
        metadata = {"name": name, "parents": [parent_id]}
        files = {
            "metadata": (None, json.dumps(metadata), "application/json; charset=UTF-8"),
            "file": (name, content, mime_type),
        }
        r = await self._request(
            "POST",
            f"{self.upload_url}/files",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            files=files,
        )
        logger.info("Uploaded %s (%d bytes)", name, len(content))
        return r.json()

    async def delete_file(self, file_id: str) -> None:
        await self._request("DELETE", f"{self.api_url}/files/{file_id}")
        logger.info("Deleted drive file %s", file_id)
