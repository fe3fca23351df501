"""
MemoryStorage and the storage factory.
"""

import pytest

from multair._parts import FilePart, FileStream, PartMetadata
from multair.faults import ConfigurationError, StorageError, StorageErrorKind
from multair.storage import (
    DiskStorage,
    MemoryFile,
    MemoryStorage,
    RelayStorage,
    create_storage,
    disk_storage,
    memory_storage,
    relay_storage,
)
from multair.storage.base import is_storage_engine, resolve


async def fed_part(*chunks, error=None, filename="a.bin"):
    stream = FileStream()
    for chunk in chunks:
        await stream.feed(chunk)
    if error is not None:
        stream.feed_error(error)
    else:
        await stream.feed_eof()
    return FilePart(PartMetadata(field_name="doc", filename=filename), stream)


class TestMemoryStorage:

    @pytest.mark.asyncio
    async def test_store(self):
        part = await fed_part(b"\x01", b"\x02\x03")
        result = await MemoryStorage().store(None, part)
        assert isinstance(result, MemoryFile)
        assert result.buffer == b"\x01\x02\x03"
        assert result.size == 3
        assert result.field_name == "doc"

    @pytest.mark.asyncio
    async def test_stream_error(self):
        cause = ConnectionResetError("gone")
        part = await fed_part(b"x", error=cause)
        with pytest.raises(StorageError) as exc_info:
            await MemoryStorage().store(None, part)
        assert exc_info.value.kind is StorageErrorKind.MEMORY
        assert exc_info.value.cause is cause
        assert exc_info.value.filename == "a.bin"

    @pytest.mark.asyncio
    async def test_discard_releases_buffer(self):
        engine = MemoryStorage()
        result = await engine.store(None, await fed_part(b"abc"))
        await engine.discard(None, result)
        assert result.buffer is None
        await engine.discard(None, result)


class TestFactory:

    def test_create_by_name(self):
        assert isinstance(create_storage(), MemoryStorage)
        assert isinstance(create_storage("DISK", destination="/tmp/u"), DiskStorage)
        relay = create_storage("relay", host="h", port=1)
        assert isinstance(relay, RelayStorage)
        assert (relay.host, relay.port) == ("h", 1)

    def test_unknown_kind(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_storage("s3")
        assert exc_info.value.option_name == "storage"

    def test_bad_options(self):
        with pytest.raises(ConfigurationError) as exc_info:
            create_storage("relay", hostname="x")
        assert exc_info.value.option_name == "storage_options"

    def test_shortcuts(self):
        assert isinstance(memory_storage(), MemoryStorage)
        assert disk_storage(destination="/tmp/u").destination == "/tmp/u"
        assert relay_storage(port=1234).port == 1234

    def test_is_storage_engine(self):
        assert is_storage_engine(MemoryStorage())
        assert not is_storage_engine(object())


class TestResolve:

    @pytest.mark.asyncio
    async def test_constant(self):
        assert await resolve("/tmp/x", None, None) == "/tmp/x"

    @pytest.mark.asyncio
    async def test_sync_callable(self):
        assert await resolve(lambda req, meta: f"{req}-{meta}", "r", "m") == "r-m"

    @pytest.mark.asyncio
    async def test_async_callable(self):
        async def pick(req, meta):
            return "async"

        assert await resolve(pick, None, None) == "async"
