"""
Google Drive Blob Store Implementation

DESIGN DECISION: Google Drive is the storage backend because:
1. Users can see and back up their day-files directly in Drive
2. No server or database is required
3. Each user's data lives in their own account

TRADEOFFS:
- No transactions or compare-and-swap (single writer assumed)
- Listing is eventually consistent
- Name queries are limited, so substring filters run in Python

The blocking client calls run in a worker thread so the ledger's
async operations suspend at every store call.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Callable, Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaInMemoryUpload
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from daybook.config import get_settings
from daybook.services.storage.interface import (
    BlobStoreInterface,
    ConnectionError,
    FileInfo,
    FileQuery,
    NotFoundError,
    PersistenceError,
    PersistenceErrorKind,
    StorageError,
)


FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
FILE_MIME_TYPE = "application/json"
FILE_FIELDS = "id, name, createdTime, modifiedTime"

# Error reasons Drive uses for throttling and exhausted quota
QUOTA_REASONS = {
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "quotaExceeded",
    "dailyLimitExceeded",
    "storageQuotaExceeded",
}


def _error_reasons(error: HttpError) -> set[str]:
    """Collect the `reason` strings from a Drive error body."""
    reasons = set()
    try:
        body = json.loads(error.content.decode("utf-8"))
    except (AttributeError, UnicodeDecodeError, ValueError):
        return reasons

    details = body.get("error", {}) if isinstance(body, dict) else {}
    if not isinstance(details, dict):
        return reasons
    for item in details.get("errors", []):
        if isinstance(item, dict) and item.get("reason"):
            reasons.add(item["reason"])
    if details.get("status"):
        reasons.add(details["status"])
    return reasons


def map_http_error(error: HttpError, operation: str) -> StorageError:
    """
    Translate a Drive HttpError into the ledger's storage errors.

    401 -> auth_expired
    403 with a quota/rate reason, 429 -> quota
    404 -> NotFoundError
    5xx -> network
    anything else -> unknown
    """
    status = int(getattr(error.resp, "status", 0) or 0)
    message = f"Drive {operation} failed with HTTP {status}"

    if status == 401:
        return PersistenceError(message, kind=PersistenceErrorKind.AUTH_EXPIRED)
    if status == 404:
        return NotFoundError(message)
    if status == 429:
        return PersistenceError(message, kind=PersistenceErrorKind.QUOTA)
    if status == 403:
        reasons = _error_reasons(error)
        if reasons & QUOTA_REASONS or "RESOURCE_EXHAUSTED" in reasons:
            return PersistenceError(message, kind=PersistenceErrorKind.QUOTA)
        return PersistenceError(message, kind=PersistenceErrorKind.UNKNOWN)
    if 500 <= status < 600:
        return PersistenceError(message, kind=PersistenceErrorKind.NETWORK)
    return PersistenceError(message, kind=PersistenceErrorKind.UNKNOWN)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _quote(value: str) -> str:
    """Escape a literal for the Drive query language."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ConnectionError) and error.kind == PersistenceErrorKind.NETWORK


class GoogleDriveClient:
    """
    Low-level Google Drive client wrapper.

    Handles authentication and provides retry logic for connecting.
    """

    def __init__(self, service: Any = None):
        self._service = service
        self._settings = get_settings().google_drive if service is None else None

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> Any:
        """
        Build the Drive v3 service.

        Uses service account credentials for authentication.
        """
        if self._service is None:
            try:
                scopes = ["https://www.googleapis.com/auth/drive"]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._service = build(
                    "drive",
                    "v3",
                    credentials=credentials,
                    cache_discovery=False,
                )
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except RefreshError as e:
                raise ConnectionError(
                    f"Google Drive credentials rejected: {e}",
                    kind=PersistenceErrorKind.AUTH_EXPIRED,
                )
            except (TransportError, httplib2.HttpLib2Error, OSError) as e:
                raise ConnectionError(
                    f"Google Drive unreachable: {e}",
                    kind=PersistenceErrorKind.NETWORK,
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Drive: {e}")

        return self._service

    def files(self) -> Any:
        return self.connect().files()


class GoogleDriveBlobStore(BlobStoreInterface):
    """
    Google Drive implementation of the blob store.

    Day-files are JSON documents inside one folder of the user's Drive.
    """

    def __init__(self, client: Optional[GoogleDriveClient] = None):
        self._client = client or GoogleDriveClient()

    async def _call(self, operation: str, fn: Callable[[], Any]) -> Any:
        """Run a blocking client call in a thread and map its failures."""
        try:
            return await asyncio.to_thread(fn)
        except HttpError as e:
            raise map_http_error(e, operation) from e
        except RefreshError as e:
            raise PersistenceError(
                f"Drive {operation} failed: credentials expired",
                kind=PersistenceErrorKind.AUTH_EXPIRED,
            ) from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            raise PersistenceError(
                f"Drive {operation} failed: {e}",
                kind=PersistenceErrorKind.NETWORK,
            ) from e

    async def list_files(self, query: FileQuery) -> list[FileInfo]:
        """List files, following pagination. Substring filters run locally."""
        clauses = ["trashed=false", f"mimeType!='{FOLDER_MIME_TYPE}'"]
        if query.name is not None:
            clauses.append(f"name='{_quote(query.name)}'")
        if query.parent_id is not None:
            clauses.append(f"'{_quote(query.parent_id)}' in parents")
        q = " and ".join(clauses)

        results = []
        page_token = None
        while True:
            token = page_token
            response = await self._call(
                "list_files",
                lambda: self._client.files().list(
                    q=q,
                    spaces="drive",
                    fields=f"nextPageToken, files({FILE_FIELDS})",
                    pageToken=token,
                ).execute(),
            )
            for item in response.get("files", []):
                if query.name_contains and query.name_contains not in item["name"]:
                    continue
                results.append(FileInfo(
                    id=item["id"],
                    name=item["name"],
                    created_at=_parse_time(item.get("createdTime")),
                    modified_at=_parse_time(item.get("modifiedTime")),
                ))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return results

    async def read_file(self, file_id: str) -> bytes:
        content = await self._call(
            "read_file",
            lambda: self._client.files().get_media(fileId=file_id).execute(),
        )
        if isinstance(content, str):
            content = content.encode("utf-8")
        return content

    async def create_file(
        self,
        name: str,
        parent_id: Optional[str],
        content: bytes,
    ) -> str:
        metadata: dict[str, Any] = {"name": name, "mimeType": FILE_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]
        media = MediaInMemoryUpload(content, mimetype=FILE_MIME_TYPE, resumable=False)
        created = await self._call(
            "create_file",
            lambda: self._client.files().create(
                body=metadata,
                media_body=media,
                fields="id",
            ).execute(),
        )
        return created["id"]

    async def update_file(
        self,
        file_id: str,
        content: bytes,
        name: Optional[str] = None,
    ) -> None:
        metadata = {"name": name} if name else {}
        media = MediaInMemoryUpload(content, mimetype=FILE_MIME_TYPE, resumable=False)
        await self._call(
            "update_file",
            lambda: self._client.files().update(
                fileId=file_id,
                body=metadata,
                media_body=media,
                fields="id",
            ).execute(),
        )

    async def ensure_folder(self, name: str) -> str:
        q = (
            f"name='{_quote(name)}' and mimeType='{FOLDER_MIME_TYPE}' "
            "and trashed=false"
        )
        response = await self._call(
            "ensure_folder",
            lambda: self._client.files().list(
                q=q,
                spaces="drive",
                fields="files(id, name)",
            ).execute(),
        )
        folders = response.get("files", [])
        if folders:
            return folders[0]["id"]

        created = await self._call(
            "ensure_folder",
            lambda: self._client.files().create(
                body={"name": name, "mimeType": FOLDER_MIME_TYPE},
                fields="id",
            ).execute(),
        )
        return created["id"]
