from enum import Enum
from typing import Union

from fsbatch.errors import DecodeError
from fsbatch.storage.backend import FileObject


class ReadType(str, Enum):
    STRING = "string"
    ARRAYBUFFER = "arraybuffer"
    BLOB = "blob"


ReadData = Union[str, bytes, FileObject]


async def decode(file_object: FileObject, read_type: ReadType, encoding: str = "utf-8") -> ReadData:
    """Materialize ``file_object`` in the representation named by ``read_type``.

    ``BLOB`` hands back the provider object itself without reading it.
    """
    read_type = ReadType(read_type)
    if read_type is ReadType.BLOB:
        return file_object

    content = await file_object.read()
    if read_type is ReadType.ARRAYBUFFER:
        return content
    try:
        return content.decode(encoding)
    except UnicodeDecodeError as e:
        raise DecodeError(f"{file_object.name} is not valid {encoding} text: {e}") from e


async def encode(data: Union[str, bytes, bytearray, memoryview, FileObject], encoding: str = "utf-8") -> bytes:
    if isinstance(data, str):
        return data.encode(encoding)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    if isinstance(data, FileObject):
        return await data.read()
    raise TypeError(f"Cannot write data of type {type(data).__name__}")
