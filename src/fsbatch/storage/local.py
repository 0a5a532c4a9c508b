import shutil
import tempfile
from pathlib import Path

import aiofiles
import aiofiles.os
from loguru import logger

from fsbatch.errors import (
    ConflictError,
    InvalidPathError,
    NotFoundError,
    QuotaExceededError,
    StorageError,
    TypeMismatchError,
)
from fsbatch.storage.backend import base_name, resolve_path


class _Quota:
    def __init__(self, root: Path, limit: int):
        self.root = root
        self.limit = limit

    def usage(self) -> int:
        try:
            return sum(p.stat().st_size for p in self.root.rglob("*") if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to measure usage of {self.root}: {e}") from e

    def check(self, growth: int) -> None:
        if growth <= 0:
            return
        requested = self.usage() + growth
        if requested > self.limit:
            raise QuotaExceededError(requested, self.limit)


class _LocalEntry:
    def __init__(self, root: Path, full_path: str, quota: _Quota):
        self._root = root
        self._full_path = full_path
        self._quota = quota

    @property
    def name(self) -> str:
        return base_name(self._full_path)

    @property
    def full_path(self) -> str:
        return self._full_path

    def _disk_path(self, full_path: str) -> Path:
        path = self._root / full_path.lstrip("/")
        try:
            resolved = path.resolve()
        except (OSError, RuntimeError) as e:
            raise InvalidPathError(f"Cannot resolve {full_path}: {e}") from e
        if not resolved.is_relative_to(self._root.resolve()):
            raise InvalidPathError(f"Path escapes the sandbox: {full_path}")
        return path

    @property
    def path(self) -> Path:
        return self._disk_path(self._full_path)


class LocalFileObject(_LocalEntry):
    @property
    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    async def read(self) -> bytes:
        try:
            async with aiofiles.open(self.path, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {self.full_path}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {self.full_path}: {e}") from e


class LocalWriter(_LocalEntry):
    def __init__(self, root: Path, full_path: str, quota: _Quota):
        super().__init__(root, full_path, quota)
        self._position = 0
        self._length = self._size_on_disk()

    @property
    def position(self) -> int:
        return self._position

    @property
    def length(self) -> int:
        return self._length

    def _size_on_disk(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {self.full_path}") from e
        except OSError as e:
            raise StorageError(f"Failed to stat {self.full_path}: {e}") from e

    async def write(self, data: bytes) -> None:
        current = self._size_on_disk()
        end = self._position + len(data)
        self._quota.check(end - current)
        try:
            async with aiofiles.open(self.path, "r+b") as f:
                await f.seek(self._position)
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to write {self.full_path}: {e}") from e
        self._position = end
        self._length = max(current, end)

    async def truncate(self, size: int) -> None:
        current = self._size_on_disk()
        self._quota.check(size - current)
        try:
            async with aiofiles.open(self.path, "r+b") as f:
                await f.truncate(size)
        except OSError as e:
            raise StorageError(f"Failed to truncate {self.full_path}: {e}") from e
        self._length = size
        self._position = min(self._position, size)


class LocalFile(_LocalEntry):
    async def open(self) -> LocalFileObject:
        try:
            is_file = self.path.is_file()
        except OSError as e:
            raise StorageError(f"Failed to stat {self.full_path}: {e}") from e
        if not is_file:
            raise NotFoundError(f"File not found: {self.full_path}")
        return LocalFileObject(self._root, self._full_path, self._quota)

    async def create_writer(self) -> LocalWriter:
        return LocalWriter(self._root, self._full_path, self._quota)

    async def remove(self) -> None:
        try:
            await aiofiles.os.remove(self.path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Failed to remove {self.full_path}: {e}") from e
        logger.debug(f"Removed file {self.full_path}")


def _probe(path: Path, full_path: str) -> tuple[bool, bool]:
    """Return ``(is_dir, exists)`` for ``path``."""
    try:
        return path.is_dir(), path.exists()
    except OSError as e:
        raise StorageError(f"Failed to stat {full_path}: {e}") from e


class LocalDirectory(_LocalEntry):
    async def get_file(
        self, name: str, create: bool = False, exclusive: bool = False
    ) -> LocalFile:
        full_path = resolve_path(self._full_path, name)
        path = self._disk_path(full_path)

        is_dir, exists = _probe(path, full_path)
        if is_dir:
            raise TypeMismatchError(f"Not a file: {full_path}")
        if exists:
            if create and exclusive:
                raise ConflictError(f"File already exists: {full_path}")
            return LocalFile(self._root, full_path, self._quota)
        if not create:
            raise NotFoundError(f"File not found: {full_path}")
        if not _probe(path.parent, full_path)[0]:
            raise NotFoundError(f"Directory not found: {base_name(full_path)}")

        try:
            async with aiofiles.open(path, "xb"):
                pass
        except FileExistsError as e:
            if exclusive:
                raise ConflictError(f"File already exists: {full_path}") from e
        except OSError as e:
            raise StorageError(f"Failed to create {full_path}: {e}") from e
        logger.debug(f"Created file {full_path}")
        return LocalFile(self._root, full_path, self._quota)

    async def get_directory(self, name: str, create: bool = False) -> "LocalDirectory":
        full_path = resolve_path(self._full_path, name)
        path = self._disk_path(full_path)

        is_dir, exists = _probe(path, full_path)
        if is_dir:
            return LocalDirectory(self._root, full_path, self._quota)
        if exists:
            raise TypeMismatchError(f"Not a directory: {full_path}")
        if not create:
            raise NotFoundError(f"Directory not found: {full_path}")

        try:
            path.mkdir()
        except FileExistsError:
            pass
        except FileNotFoundError as e:
            raise NotFoundError(f"Parent directory not found: {full_path}") from e
        except OSError as e:
            raise StorageError(f"Failed to create {full_path}: {e}") from e
        logger.debug(f"Created directory {full_path}")
        return LocalDirectory(self._root, full_path, self._quota)


class LocalStorage:
    """Sandboxed file store rooted in a directory on local disk.

    Persistent sessions share ``data_dir/persistent``. Each temporary session
    gets its own directory under ``data_dir/temporary``, removed by ``close()``.
    """

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self._temporary_roots: list[Path] = []

    @property
    def persistent_dir(self) -> Path:
        return self.data_dir / "persistent"

    @property
    def temporary_dir(self) -> Path:
        return self.data_dir / "temporary"

    async def open_session(self, persistent: bool, quota_bytes: int) -> LocalDirectory:
        if quota_bytes <= 0:
            raise StorageError(f"Quota must be positive, got {quota_bytes}")

        try:
            if persistent:
                root = self.persistent_dir
                root.mkdir(parents=True, exist_ok=True)
            else:
                self.temporary_dir.mkdir(parents=True, exist_ok=True)
                root = Path(tempfile.mkdtemp(dir=self.temporary_dir))
                self._temporary_roots.append(root)
        except OSError as e:
            raise StorageError(f"Failed to open storage at {self.data_dir}: {e}") from e

        quota = _Quota(root, quota_bytes)
        usage = quota.usage()
        if usage > quota_bytes:
            raise QuotaExceededError(usage, quota_bytes)

        kind = "persistent" if persistent else "temporary"
        logger.info(f"Opened {kind} local storage at {root} (quota: {quota_bytes} bytes)")
        return LocalDirectory(root, "/", quota)

    async def close(self) -> None:
        for root in self._temporary_roots:
            shutil.rmtree(root, ignore_errors=True)
        self._temporary_roots.clear()
