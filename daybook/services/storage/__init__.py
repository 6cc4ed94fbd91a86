"""
Storage Services Package

Provides the abstract blob store interface and its implementations.
Google Drive is the production backend; the in-memory store serves
tests and local runs.
"""

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
from daybook.services.storage.memory import InMemoryBlobStore
from daybook.services.storage.google_drive import (
    GoogleDriveBlobStore,
    GoogleDriveClient,
)

__all__ = [
    # Interface
    "BlobStoreInterface",
    "FileInfo",
    "FileQuery",
    # Exceptions
    "ConnectionError",
    "NotFoundError",
    "PersistenceError",
    "PersistenceErrorKind",
    "StorageError",
    # Implementations
    "InMemoryBlobStore",
    "GoogleDriveBlobStore",
    "GoogleDriveClient",
]
