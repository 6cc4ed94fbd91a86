"""
In-Memory Blob Store

Used by the test suite and for local runs without Drive credentials.
Behaves like a single Drive folder tree: files have opaque ids,
names are not unique, and content is stored as bytes.

`fail_next` lets tests inject a PersistenceError into the next call
of a given operation; `vanish_on_read` deletes a file the moment it is
read, like a file removed between listing and reading.
"""

from datetime import datetime
from itertools import count
from typing import Optional

from daybook.services.storage.interface import (
    BlobStoreInterface,
    FileInfo,
    FileQuery,
    NotFoundError,
    PersistenceError,
    PersistenceErrorKind,
)


class _StoredFile:
    __slots__ = ("id", "name", "parent_id", "content", "is_folder",
                 "created_at", "modified_at")

    def __init__(self, file_id, name, parent_id, content, is_folder=False):
        now = datetime.utcnow()
        self.id = file_id
        self.name = name
        self.parent_id = parent_id
        self.content = content
        self.is_folder = is_folder
        self.created_at = now
        self.modified_at = now

    def info(self) -> FileInfo:
        return FileInfo(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            modified_at=self.modified_at,
        )


class InMemoryBlobStore(BlobStoreInterface):
    """Dictionary-backed implementation of the blob store."""

    def __init__(self):
        self._files: dict[str, _StoredFile] = {}
        self._ids = count(1)
        self._failures: dict[str, PersistenceError] = {}
        self._vanishing: set[str] = set()
        self.calls: list[str] = []

    # =========================================================================
    # TEST HOOKS
    # =========================================================================

    def fail_next(
        self,
        operation: str,
        kind: PersistenceErrorKind = PersistenceErrorKind.NETWORK,
    ) -> None:
        """Make the next call to `operation` raise a PersistenceError."""
        self._failures[operation] = PersistenceError(
            f"Injected {kind.value} failure in {operation}", kind=kind
        )

    def vanish_on_read(self, name: str) -> None:
        """Delete `name` when it is next read, so that read raises NotFoundError."""
        self._vanishing.add(name)

    def put(self, name: str, content: bytes, folder: Optional[str] = None) -> str:
        """Seed a file synchronously, optionally inside a named folder."""
        parent_id = self._folder_id(folder) if folder else None
        file_id = self._new_id()
        self._files[file_id] = _StoredFile(file_id, name, parent_id, content)
        return file_id

    def names(self) -> list[str]:
        """Names of all non-folder files."""
        return sorted(f.name for f in self._files.values() if not f.is_folder)

    def content_of(self, name: str) -> bytes:
        for stored in self._files.values():
            if stored.name == name and not stored.is_folder:
                return stored.content
        raise NotFoundError(f"File not found: {name}")

    def _new_id(self) -> str:
        return f"mem-{next(self._ids)}"

    def _check(self, operation: str) -> None:
        self.calls.append(operation)
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    def _get(self, file_id: str) -> _StoredFile:
        stored = self._files.get(file_id)
        if stored is None or stored.is_folder:
            raise NotFoundError(f"File not found: {file_id}")
        return stored

    # =========================================================================
    # INTERFACE
    # =========================================================================

    async def list_files(self, query: FileQuery) -> list[FileInfo]:
        self._check("list_files")
        return [
            stored.info()
            for stored in self._files.values()
            if not stored.is_folder and query.matches(stored.name, stored.parent_id)
        ]

    async def read_file(self, file_id: str) -> bytes:
        self._check("read_file")
        stored = self._get(file_id)
        if stored.name in self._vanishing:
            self._vanishing.discard(stored.name)
            del self._files[file_id]
            raise NotFoundError(f"File not found: {file_id}")
        return stored.content

    async def create_file(
        self,
        name: str,
        parent_id: Optional[str],
        content: bytes,
    ) -> str:
        self._check("create_file")
        file_id = self._new_id()
        self._files[file_id] = _StoredFile(file_id, name, parent_id, content)
        return file_id

    async def update_file(
        self,
        file_id: str,
        content: bytes,
        name: Optional[str] = None,
    ) -> None:
        self._check("update_file")
        stored = self._get(file_id)
        stored.content = content
        if name is not None:
            stored.name = name
        stored.modified_at = datetime.utcnow()

    async def ensure_folder(self, name: str) -> str:
        self._check("ensure_folder")
        return self._folder_id(name)

    def _folder_id(self, name: str) -> str:
        for stored in self._files.values():
            if stored.is_folder and stored.name == name:
                return stored.id
        folder_id = self._new_id()
        self._files[folder_id] = _StoredFile(folder_id, name, None, b"", is_folder=True)
        return folder_id
