from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from loguru import logger

from fsbatch.config import DEFAULT_QUOTA_BYTES
from fsbatch.decoder import ReadData, ReadType, decode, encode
from fsbatch.errors import FsBatchError, NoActiveFileError, NotFoundError
from fsbatch.storage.backend import (
    DirectoryHandle,
    FileHandle,
    FileObject,
    StorageProvider,
    Writer,
)
from fsbatch.transport import HttpTransport, Transport

WriteData = Union[str, bytes, bytearray, memoryview, FileObject]


class HandleState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    FILE_CACHED = "file_cached"
    WRITER_CACHED = "writer_cached"
    BOTH_CACHED = "both_cached"


@dataclass
class ResultSink:
    type: Optional[ReadType] = None
    success: bool = False
    data: Optional[ReadData] = None


class Session:
    """Current directory and current file of one working area in a store.

    Every operation returns ``True`` or ``False``. Storage, transport and
    decode errors are logged and reported as ``False``; the session keeps its
    previous state when an operation fails.

    The file object and writer of the current file are acquired on first use
    and dropped whenever ``open`` switches to another file.
    """

    def __init__(
        self,
        root: DirectoryHandle,
        transport: Optional[Transport] = None,
        encoding: str = "utf-8",
    ):
        self.root = root
        self.cwd = root
        self.file: Optional[FileHandle] = None
        self.transport = transport or HttpTransport()
        self.encoding = encoding
        self._writer: Optional[Writer] = None
        self._file_object: Optional[FileObject] = None

    @classmethod
    async def connect(
        cls,
        storage: StorageProvider,
        persistent: bool = False,
        quota_bytes: int = DEFAULT_QUOTA_BYTES,
        transport: Optional[Transport] = None,
    ) -> "Session":
        root = await storage.open_session(persistent, quota_bytes)
        return cls(root, transport=transport)

    @property
    def state(self) -> HandleState:
        if self.file is None:
            return HandleState.CLOSED
        if self._file_object is not None and self._writer is not None:
            return HandleState.BOTH_CACHED
        if self._file_object is not None:
            return HandleState.FILE_CACHED
        if self._writer is not None:
            return HandleState.WRITER_CACHED
        return HandleState.OPEN

    def _set_file(self, file: FileHandle) -> None:
        self.file = file
        self._writer = None
        self._file_object = None

    async def _get_file_object(self, operation: str) -> FileObject:
        if self.file is None:
            raise NoActiveFileError(operation)
        if self._file_object is None:
            self._file_object = await self.file.open()
        return self._file_object

    async def _get_writer(self, operation: str) -> Writer:
        if self.file is None:
            raise NoActiveFileError(operation)
        if self._writer is None:
            self._writer = await self.file.create_writer()
        return self._writer

    def _fail(self, operation: str, error: Exception) -> bool:
        logger.warning(f"{operation} failed in {self.cwd.full_path}: {type(error).__name__}: {error}")
        return False

    async def open(self, name: str, create: bool = False, exclusive: bool = False) -> bool:
        try:
            file = await self.cwd.get_file(name, create=create, exclusive=exclusive)
        except FsBatchError as e:
            return self._fail("open", e)
        self._set_file(file)
        logger.debug(f"Opened {file.full_path}")
        return True

    async def read(
        self, read_type: ReadType = ReadType.STRING, result: Optional[ResultSink] = None
    ) -> bool:
        read_type = ReadType(read_type)
        if result is None:
            result = ResultSink()
        result.type = read_type
        result.success = False
        result.data = None
        try:
            file_object = await self._get_file_object("read")
            data = await decode(file_object, read_type, self.encoding)
        except FsBatchError as e:
            return self._fail("read", e)
        result.data = data
        result.success = True
        return True

    async def write(self, data: WriteData) -> bool:
        try:
            writer = await self._get_writer("write")
            content = await encode(data, self.encoding)
            await writer.write(content)
        except FsBatchError as e:
            return self._fail("write", e)
        logger.debug(f"Wrote {len(content)} bytes to {self.file.full_path}")
        return True

    async def truncate(self, size: int) -> bool:
        try:
            writer = await self._get_writer("truncate")
            await writer.truncate(size)
        except FsBatchError as e:
            return self._fail("truncate", e)
        logger.debug(f"Truncated {self.file.full_path} to {size} bytes")
        return True

    async def mkdir(self, name: str) -> bool:
        try:
            await self.cwd.get_directory(name, create=True)
        except FsBatchError as e:
            return self._fail("mkdir", e)
        return True

    async def chdir(self, name: str) -> bool:
        try:
            self.cwd = await self.cwd.get_directory(name)
        except FsBatchError as e:
            return self._fail("chdir", e)
        logger.debug(f"Changed directory to {self.cwd.full_path}")
        return True

    async def _exists(self, name: str) -> bool:
        try:
            await self.cwd.get_file(name)
        except NotFoundError:
            return False
        return True

    async def _store(self, name: str, content: bytes, existed: bool) -> FileHandle:
        file = await self.cwd.get_file(name, create=True)
        try:
            # Overwrite first, then cut the tail: a rejected write leaves the file as it was.
            writer = await file.create_writer()
            await writer.write(content)
            await writer.truncate(len(content))
        except FsBatchError:
            if not existed:
                await file.remove()
            raise
        return file

    async def fetch(self, name: str, url: str, overwrite: bool = False) -> bool:
        """Download ``url`` into ``name``, replacing any previous content.

        Without ``overwrite`` an existing ``name`` is left alone and no request
        is made. The existence probe does not create the file and does not
        change the current file. A fetch that fails after the download leaves
        neither a new file nor changed content behind, and the current file
        only switches to ``name`` once the content is stored.
        """
        try:
            existed = await self._exists(name)
            if existed and not overwrite:
                logger.info(f"Skip fetching {url} to {name}: file exists")
                return True
            status, body = await self.transport.get(url)
        except FsBatchError as e:
            return self._fail("fetch", e)

        if status != 200:
            logger.warning(f"fetch failed: GET {url} returned status {status}")
            return False

        try:
            file = await self._store(name, body, existed)
        except FsBatchError as e:
            return self._fail("fetch", e)
        self._set_file(file)
        logger.info(f"Fetched {url} to {file.full_path} ({len(body)} bytes)")
        return True
