"""
RelayStorage: connect/transfer timeouts and phase-specific failures.
"""

import asyncio
import time

import pytest

from multair._parts import FilePart, FileStream, PartMetadata
from multair.faults import StorageError, StorageErrorKind
from multair.storage.relay import RelayReceipt, RelayStorage, TransferTimeout
from tests.conftest import RelaySink


def new_part(filename="data.bin", max_buffered=16):
    return FilePart(PartMetadata(field_name="doc", filename=filename), FileStream(max_buffered))


async def feed_all(stream, data, chunk_size=4096):
    for i in range(0, len(data), chunk_size):
        await stream.feed(data[i:i + chunk_size])
    await stream.feed_eof()


async def closed_port() -> int:
    server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()
    return port


class TestRelayTransfer:

    @pytest.mark.asyncio
    async def test_bytes_transferred_matches_source(self):
        payload = bytes(range(256)) * 1024
        async with RelaySink() as sink:
            engine = RelayStorage(host="127.0.0.1", port=sink.port)
            part = new_part(max_buffered=4)
            feeder = asyncio.ensure_future(feed_all(part.stream, payload))

            receipt = await engine.store(None, part)
            await feeder

            assert isinstance(receipt, RelayReceipt)
            assert receipt.bytes_transferred == len(payload)
            assert receipt.size == len(payload)
            assert (receipt.remote_host, receipt.remote_port) == ("127.0.0.1", sink.port)
            received = await sink.wait_received()
            assert received == [payload]

    @pytest.mark.asyncio
    async def test_empty_file(self):
        async with RelaySink() as sink:
            part = new_part()
            await part.stream.feed_eof()
            receipt = await RelayStorage(host="127.0.0.1", port=sink.port).store(None, part)
            assert receipt.bytes_transferred == 0

    @pytest.mark.asyncio
    async def test_discard_is_noop(self):
        receipt = RelayReceipt(metadata=PartMetadata(field_name="doc"), size=1)
        await RelayStorage().discard(None, receipt)


class TestRelayFailures:

    @pytest.mark.asyncio
    async def test_connect_timeout_is_bounded(self):
        # Non-routable address: the SYN is never answered.
        engine = RelayStorage(host="10.255.255.1", port=9999, connect_timeout=0.001)
        part = new_part()
        start = time.monotonic()
        with pytest.raises(StorageError) as exc_info:
            await engine.store(None, part)
        elapsed = time.monotonic() - start

        assert exc_info.value.kind is StorageErrorKind.CONNECTION
        assert exc_info.value.retryable
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_connection_refused_drains_stream(self):
        port = await closed_port()
        part = new_part(max_buffered=1)
        with pytest.raises(StorageError) as exc_info:
            await RelayStorage(host="127.0.0.1", port=port).store(None, part)
        assert exc_info.value.kind is StorageErrorKind.CONNECTION

        # The producer is never blocked once the stream is drained.
        await asyncio.wait_for(feed_all(part.stream, b"x" * 100, chunk_size=1), 1)

    @pytest.mark.asyncio
    async def test_source_error_is_relay_read(self):
        async with RelaySink() as sink:
            part = new_part()
            cause = ConnectionResetError("client went away")
            await part.stream.feed(b"first")

            async def fail_later():
                await asyncio.sleep(0.05)
                part.stream.feed_error(cause)

            failer = asyncio.ensure_future(fail_later())
            with pytest.raises(StorageError) as exc_info:
                await RelayStorage(host="127.0.0.1", port=sink.port).store(None, part)
            await failer

            assert exc_info.value.kind is StorageErrorKind.RELAY_READ
            assert exc_info.value.cause is cause
            assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_transfer_timeout_is_relay_write(self):
        async with RelaySink() as sink:
            part = new_part()
            await part.stream.feed(b"never finished")
            engine = RelayStorage(host="127.0.0.1", port=sink.port, transfer_timeout=0.05)

            with pytest.raises(StorageError) as exc_info:
                await engine.store(None, part)

            assert exc_info.value.kind is StorageErrorKind.RELAY_WRITE
            assert isinstance(exc_info.value.cause, TransferTimeout)
            # The aborted connection still ends on the sink side.
            assert len(await sink.wait_received()) == 1

    @pytest.mark.asyncio
    async def test_remote_reset_is_relay_write_and_drains(self):
        async with RelaySink(reset_after=10) as sink:
            part = new_part(max_buffered=2)
            feeder = asyncio.ensure_future(feed_all(part.stream, b"z" * (200 * 65536), 65536))

            with pytest.raises(StorageError) as exc_info:
                await RelayStorage(host="127.0.0.1", port=sink.port).store(None, part)

            assert exc_info.value.kind is StorageErrorKind.RELAY_WRITE
            assert isinstance(exc_info.value.cause, OSError)
            assert not isinstance(exc_info.value.cause, TransferTimeout)
            # The rest of the part is dropped, so the producer is not left waiting.
            await asyncio.wait_for(feeder, 5)

    @pytest.mark.asyncio
    async def test_socket_timeout_keeps_its_cause(self):
        raised = TimeoutError("socket send timed out")

        class StalledRelay(RelayStorage):
            async def _pump(self, part, writer, progress):
                raise raised

        async with RelaySink() as sink:
            part = new_part()
            await part.stream.feed(b"payload")
            engine = StalledRelay(host="127.0.0.1", port=sink.port, transfer_timeout=5)

            with pytest.raises(StorageError) as exc_info:
                await engine.store(None, part)

            assert exc_info.value.kind is StorageErrorKind.RELAY_WRITE
            assert exc_info.value.cause is raised
            assert not isinstance(exc_info.value.cause, TransferTimeout)
