import pytest

from fsbatch.decoder import ReadType, decode, encode
from fsbatch.errors import DecodeError


class FakeFileObject:
    def __init__(self, content: bytes, name: str = "file.bin"):
        self._content = content
        self.name = name
        self.size = len(content)
        self.reads = 0

    async def read(self) -> bytes:
        self.reads += 1
        return self._content


class TestDecode:
    @pytest.mark.asyncio
    async def test_string(self):
        assert await decode(FakeFileObject("grüße".encode("utf-8")), ReadType.STRING) == "grüße"

    @pytest.mark.asyncio
    async def test_string_with_other_encoding(self):
        content = "grüße".encode("latin-1")
        assert await decode(FakeFileObject(content), ReadType.STRING, encoding="latin-1") == "grüße"

    @pytest.mark.asyncio
    async def test_arraybuffer(self):
        assert await decode(FakeFileObject(b"\x00\x01"), "arraybuffer") == b"\x00\x01"

    @pytest.mark.asyncio
    async def test_blob_is_not_read(self):
        file_object = FakeFileObject(b"data")

        assert await decode(file_object, ReadType.BLOB) is file_object
        assert file_object.reads == 0

    @pytest.mark.asyncio
    async def test_invalid_text_raises(self):
        with pytest.raises(DecodeError):
            await decode(FakeFileObject(b"\xc3\x28"), ReadType.STRING)

    @pytest.mark.asyncio
    async def test_unknown_type_raises(self):
        with pytest.raises(ValueError):
            await decode(FakeFileObject(b""), "text")


class TestEncode:
    @pytest.mark.asyncio
    async def test_text_is_utf8(self):
        assert await encode("héllo") == "héllo".encode("utf-8")

    @pytest.mark.asyncio
    async def test_buffers_are_copied(self):
        assert await encode(bytearray(b"ab")) == b"ab"
        assert await encode(memoryview(b"cd")) == b"cd"

    @pytest.mark.asyncio
    async def test_file_object_is_read(self):
        assert await encode(FakeFileObject(b"blob")) == b"blob"

    @pytest.mark.asyncio
    async def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            await encode(123)
