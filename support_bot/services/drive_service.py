"""Google Drive v3 client used as the ticket document store."""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaInMemoryUpload

from support_bot.logging_config import get_logger
from support_bot.services.errors import NotFoundError, StoreError

logger = get_logger("drive_service")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


@dataclass(frozen=True)
class StoredObject:
    id: str
    name: str
    link: Optional[str] = None


def _quote(value: str) -> str:
    # Drive query string literals
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _to_object(item: dict) -> StoredObject:
    return StoredObject(id=item["id"], name=item.get("name", ""), link=item.get("webViewLink"))


class DriveService:
    """Async facade over a `build("drive", "v3")` resource.

    The API client is blocking and its HTTP object is not thread-safe, so
    requests run one at a time in a worker thread.
    """

    FIELDS = "id, name, webViewLink"

    def __init__(self, service: Any = None):
        self._service = service
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        if self._service is not None:
            self._service.close()

    async def _execute(self, make_request: Callable[[Any], Any], action: str) -> Any:
        if self._service is None:
            raise StoreError("Drive is not configured")

        files = self._service.files()
        try:
            async with self._lock:
                return await asyncio.to_thread(lambda: make_request(files).execute())
        except HttpError as e:
            if e.resp.status == 404:
                raise NotFoundError(f"Drive object not found: {action}") from e
            logger.error(
                "Drive API error",
                extra={"context": {"action": action, "status": e.resp.status, "reason": e.reason}},
            )
            raise StoreError(f"Drive API error {e.resp.status} on {action}") from e
        except Exception as e:
            logger.error(f"Drive request failed: {action}: {e}")
            raise StoreError(f"Drive request failed: {e}") from e

    async def create_folder(self, name: str, parent_id: Optional[str] = None) -> str:
        """Return the id of folder `name`, creating it when it does not exist."""
        query = f"name = '{_quote(name)}' and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        if parent_id:
            query += f" and '{_quote(parent_id)}' in parents"
        found = await self._execute(
            lambda files: files.list(q=query, spaces="drive", fields="files(id, name)"), f"find folder {name}"
        )
        existing = found.get("files", [])
        if existing:
            return existing[0]["id"]

        metadata = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        created = await self._execute(lambda files: files.create(body=metadata, fields="id"), f"create folder {name}")
        logger.info(f"Created Drive folder {name}: {created['id']}")
        return created["id"]

    async def upload_object(self, folder_id: str, name: str, data: bytes, mime_type: str) -> StoredObject:
        media = MediaInMemoryUpload(data, mimetype=mime_type, resumable=False)
        created = await self._execute(
            lambda files: files.create(
                body={"name": name, "parents": [folder_id]}, media_body=media, fields=self.FIELDS
            ),
            f"upload {name}",
        )
        return _to_object(created)

    async def list_objects(self, folder_id: str, name_prefix: str = "", limit: int = 100) -> list[StoredObject]:
        """Objects in a folder whose name starts with name_prefix, newest first."""
        query = f"'{_quote(folder_id)}' in parents and trashed = false"
        if name_prefix:
            query += f" and name contains '{_quote(name_prefix)}'"
        listed = await self._execute(
            lambda files: files.list(
                q=query, orderBy="createdTime desc", pageSize=limit, fields=f"files({self.FIELDS})"
            ),
            f"list {name_prefix or folder_id}",
        )
        # Drive's "contains" matches word prefixes, so filter precisely here
        return [
            _to_object(item) for item in listed.get("files", []) if item.get("name", "").startswith(name_prefix)
        ]

    async def get_object(self, object_id: str) -> bytes:
        return await self._execute(lambda files: files.get_media(fileId=object_id), f"get {object_id}")
