from fsbatch.storage.backend import (
    DirectoryHandle,
    FileHandle,
    FileObject,
    StorageProvider,
    Writer,
)
from fsbatch.storage.local import LocalStorage
from fsbatch.storage.s3 import S3Storage

__all__ = [
    "DirectoryHandle",
    "FileHandle",
    "FileObject",
    "StorageProvider",
    "Writer",
    "LocalStorage",
    "S3Storage",
]
