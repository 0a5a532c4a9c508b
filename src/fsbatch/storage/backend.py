import posixpath
from typing import Protocol, runtime_checkable

from fsbatch.errors import InvalidPathError


@runtime_checkable
class FileObject(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def size(self) -> int: ...

    async def read(self) -> bytes: ...


@runtime_checkable
class Writer(Protocol):
    @property
    def position(self) -> int: ...

    @property
    def length(self) -> int: ...

    async def write(self, data: bytes) -> None: ...

    async def truncate(self, size: int) -> None: ...


@runtime_checkable
class FileHandle(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def full_path(self) -> str: ...

    async def open(self) -> FileObject: ...

    async def create_writer(self) -> Writer: ...

    async def remove(self) -> None: ...


@runtime_checkable
class DirectoryHandle(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def full_path(self) -> str: ...

    async def get_file(
        self, name: str, create: bool = False, exclusive: bool = False
    ) -> FileHandle: ...

    async def get_directory(
        self, name: str, create: bool = False
    ) -> "DirectoryHandle": ...


@runtime_checkable
class StorageProvider(Protocol):
    async def open_session(
        self, persistent: bool, quota_bytes: int
    ) -> DirectoryHandle: ...

    async def close(self) -> None: ...


def resolve_path(cwd: str, name: str) -> str:
    """Resolve ``name`` against ``cwd`` inside the sandbox.

    Both paths are sandbox-absolute POSIX strings ("/" is the root). A leading
    "/" in ``name`` restarts from the root, ".." above the root stays at the
    root, so the result can never leave the sandbox.
    """
    if not isinstance(name, str) or "\x00" in name:
        raise InvalidPathError(f"Invalid path: {name!r}")

    base = "/" if name.startswith("/") else cwd
    parts: list[str] = [p for p in base.split("/") if p]
    for part in name.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if parts:
                parts.pop()
            continue
        parts.append(part)
    return "/" + "/".join(parts)


def base_name(full_path: str) -> str:
    return posixpath.basename(full_path) or "/"
