import asyncio
import inspect
from collections import deque
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from loguru import logger

from fsbatch.decoder import ReadType
from fsbatch.session import ResultSink, Session, WriteData
from fsbatch.storage.backend import FileObject

Callback = Callable[[bool], Union[None, Awaitable[None]]]


class Command(str, Enum):
    OPEN = "open"
    READ = "read"
    WRITE = "write"
    TRUNCATE = "truncate"
    MKDIR = "mkdir"
    CHDIR = "chdir"
    FETCH = "fetch"


_NAMED_COMMANDS = {Command.OPEN, Command.MKDIR, Command.CHDIR, Command.FETCH}


def _require_str(value: Any, field: str, cmd: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"'{cmd}' requires a non-empty string '{field}'")


@dataclass(frozen=True)
class Operation:
    """One step of a batch.

    Known commands are validated on construction. An unknown ``cmd`` is
    accepted and fails its step when the batch runs.
    """

    cmd: str
    force: bool = False
    callback: Optional[Callback] = None
    name: Optional[str] = None
    create: bool = False
    exclusive: bool = False
    read_type: ReadType = ReadType.STRING
    result: Optional[ResultSink] = None
    data: Optional[WriteData] = None
    size: Optional[int] = None
    url: Optional[str] = None
    overwrite: bool = False

    def __post_init__(self):
        if not isinstance(self.cmd, str):
            raise ValueError(f"cmd must be a string, got {self.cmd!r}")
        if self.callback is not None and not callable(self.callback):
            raise TypeError("callback must be callable")
        try:
            command = Command(self.cmd)
        except ValueError:
            return
        object.__setattr__(self, "cmd", command.value)

        if command in _NAMED_COMMANDS:
            _require_str(self.name, "name", command.value)
        if command is Command.FETCH:
            _require_str(self.url, "url", command.value)
        elif command is Command.READ:
            object.__setattr__(self, "read_type", ReadType(self.read_type))
            if self.result is None:
                object.__setattr__(self, "result", ResultSink())
            elif not isinstance(self.result, ResultSink):
                raise TypeError("'read' result must be a ResultSink")
        elif command is Command.WRITE:
            if not isinstance(self.data, (str, bytes, bytearray, memoryview, FileObject)):
                raise TypeError(f"Cannot write data of type {type(self.data).__name__}")
        elif command is Command.TRUNCATE:
            if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size < 0:
                raise ValueError(f"'truncate' requires a non-negative integer 'size', got {self.size!r}")

    @classmethod
    def from_dict(cls, item: dict) -> "Operation":
        """Build an operation from the ``{"cmd": ..., ...}`` wire shape."""
        values = dict(item)
        if "cmd" not in values:
            raise ValueError(f"Operation is missing 'cmd': {item!r}")
        if "type" in values:
            values["read_type"] = values.pop("type")

        names = {f.name for f in fields(cls)}
        unknown = set(values) - names
        if unknown:
            if values["cmd"] in {c.value for c in Command}:
                raise ValueError(f"Unknown fields for '{values['cmd']}': {sorted(unknown)}")
            for key in unknown:
                values.pop(key)
        return cls(**values)


def _as_operation(item: Union[Operation, dict]) -> Operation:
    if isinstance(item, Operation):
        return item
    if isinstance(item, dict):
        return Operation.from_dict(item)
    raise TypeError(f"Expected an Operation or dict, got {type(item).__name__}")


async def _notify(callback: Optional[Callback], result: bool) -> None:
    if callback is None:
        return
    outcome = callback(result)
    if inspect.isawaitable(outcome):
        await outcome


class BatchExecutor:
    """Runs batches of operations against one session, one step at a time.

    Concurrent ``run`` calls on the same executor are serialized. A callback
    must not start another ``run`` on the same executor and await it.
    """

    def __init__(self, session: Session):
        self.session = session
        self._lock = asyncio.Lock()

    async def run(
        self,
        batch: Iterable[Union[Operation, dict]],
        callback: Optional[Callback] = None,
    ) -> bool:
        queue = deque(_as_operation(item) for item in batch)
        async with self._lock:
            result = await self._drain(queue)
        await _notify(callback, result)
        return result

    async def _drain(self, queue: deque) -> bool:
        step = 0
        while queue:
            op = queue.popleft()
            ok = await self._dispatch(op)
            logger.debug(f"Step {step} '{op.cmd}': {'ok' if ok else 'failed'}")
            await _notify(op.callback, ok)
            if not ok and not op.force:
                logger.info(
                    f"Batch stopped at step {step} ('{op.cmd}'), {len(queue)} operation(s) skipped"
                )
                return False
            step += 1
        return True

    async def _dispatch(self, op: Operation) -> bool:
        session = self.session
        if op.cmd == Command.OPEN:
            return await session.open(op.name, create=op.create, exclusive=op.exclusive)
        if op.cmd == Command.READ:
            return await session.read(op.read_type, op.result)
        if op.cmd == Command.WRITE:
            return await session.write(op.data)
        if op.cmd == Command.TRUNCATE:
            return await session.truncate(op.size)
        if op.cmd == Command.MKDIR:
            return await session.mkdir(op.name)
        if op.cmd == Command.CHDIR:
            return await session.chdir(op.name)
        if op.cmd == Command.FETCH:
            return await session.fetch(op.name, op.url, overwrite=op.overwrite)

        logger.warning(f"Unknown command: {op.cmd}")
        return False
