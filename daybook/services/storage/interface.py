"""
Abstract Blob Store Interface

DESIGN DECISION: The ledger only ever sees a folder of named blobs.
This allows us to:
1. Use Google Drive in production
2. Use in-memory storage for testing and guest sessions
3. Keep the ledger logic decoupled from any provider's HTTP API

The interface is intentionally small. Files are listed by name,
read and written whole, and optionally renamed on update.
There is no delete: day-files are never removed by normal operation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class FileQuery(BaseModel):
    """Filter for listing files. Unset fields do not filter."""

    name: Optional[str] = Field(
        default=None,
        description="Exact file name"
    )
    name_contains: Optional[str] = Field(
        default=None,
        description="Substring the file name must contain"
    )
    parent_id: Optional[str] = Field(
        default=None,
        description="Folder the file must live in"
    )

    def matches(self, name: str, parent_id: Optional[str]) -> bool:
        if self.name is not None and name != self.name:
            return False
        if self.name_contains is not None and self.name_contains not in name:
            return False
        if self.parent_id is not None and parent_id != self.parent_id:
            return False
        return True


class FileInfo(BaseModel):
    """Metadata of a stored file."""

    id: str
    name: str
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


class BlobStoreInterface(ABC):
    """
    Abstract interface for the remote file store.

    Any storage implementation (Google Drive, in-memory, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def list_files(self, query: FileQuery) -> list[FileInfo]:
        """
        List files matching a query.

        Args:
            query: Name and folder filters

        Returns:
            Matching files, in no particular order

        Raises:
            PersistenceError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def read_file(self, file_id: str) -> bytes:
        """
        Read the full content of a file.

        Raises:
            NotFoundError: If the file doesn't exist
            PersistenceError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def create_file(
        self,
        name: str,
        parent_id: Optional[str],
        content: bytes,
    ) -> str:
        """
        Create a new file.

        Returns:
            The new file's id
        """
        pass

    @abstractmethod
    async def update_file(
        self,
        file_id: str,
        content: bytes,
        name: Optional[str] = None,
    ) -> None:
        """
        Replace a file's content, optionally renaming it.

        Raises:
            NotFoundError: If the file doesn't exist
        """
        pass

    @abstractmethod
    async def ensure_folder(self, name: str) -> str:
        """
        Find or create a folder by name.

        Idempotent: repeated calls return the same folder id.
        """
        pass


# =============================================================================
# EXCEPTIONS
# =============================================================================

class PersistenceErrorKind(str, Enum):
    """Why a blob store call failed."""
    AUTH_EXPIRED = "auth_expired"
    NETWORK = "network"
    QUOTA = "quota"
    UNKNOWN = "unknown"


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class PersistenceError(StorageError):
    """The backing store failed. Never retried by the ledger."""

    def __init__(
        self,
        message: str,
        kind: PersistenceErrorKind = PersistenceErrorKind.UNKNOWN,
    ):
        super().__init__(message)
        self.kind = kind


class NotFoundError(StorageError):
    """File not found in storage."""
    pass


class ConnectionError(PersistenceError):
    """Could not connect to storage backend."""

    def __init__(
        self,
        message: str,
        kind: PersistenceErrorKind = PersistenceErrorKind.UNKNOWN,
    ):
        super().__init__(message, kind=kind)
