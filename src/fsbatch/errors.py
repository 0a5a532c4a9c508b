class FsBatchError(Exception):
    pass


class StorageError(FsBatchError):
    """Raised when the storage provider rejects an operation."""


class NotFoundError(StorageError):
    pass


class ConflictError(StorageError):
    pass


class TypeMismatchError(StorageError):
    """A file was requested where a directory exists, or the reverse."""


class QuotaExceededError(StorageError):
    def __init__(self, requested: int, quota: int):
        super().__init__(f"Quota exceeded: {requested} bytes requested, quota is {quota}")
        self.requested = requested
        self.quota = quota


class InvalidPathError(StorageError):
    pass


class NoActiveFileError(FsBatchError):
    def __init__(self, operation: str):
        super().__init__(f"No file is open for {operation}")
        self.operation = operation


class TransportError(FsBatchError):
    pass


class DecodeError(FsBatchError):
    pass
