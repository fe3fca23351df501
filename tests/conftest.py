"""
Shared test fixtures and helpers for the Multair test suite.
"""

import asyncio
import socket
import struct
import pytest
from typing import List, Optional, Sequence, Tuple

from multair.request import Request


BOUNDARY = "----MultairTestBoundary7MA4YWxk"


# ============================================================================
# Request Helpers
# ============================================================================


def make_scope(
    method: str = "POST",
    path: str = "/upload",
    headers: Optional[List[tuple]] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if headers:
        for name, value in headers:
            raw_headers.append(
                (name.encode("latin-1") if isinstance(name, str) else name,
                 value.encode("latin-1") if isinstance(value, str) else value)
            )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": raw_headers,
        "client": ("127.0.0.1", 12345),
    }


class Receive:
    """ASGI receive callable over a list of chunks; counts calls."""

    def __init__(
        self,
        chunks: Sequence[bytes],
        *,
        error: Optional[BaseException] = None,
        disconnect: bool = False,
    ):
        self.messages = [
            {"type": "http.request", "body": chunk, "more_body": i < len(chunks) - 1 or bool(error) or disconnect}
            for i, chunk in enumerate(chunks)
        ]
        self.error = error
        self.disconnect = disconnect
        self.calls = 0

    async def __call__(self) -> dict:
        self.calls += 1
        if self.messages:
            return self.messages.pop(0)
        if self.error is not None:
            raise self.error
        return {"type": "http.disconnect"}


def make_receive(
    body: bytes = b"",
    *,
    chunks: Optional[List[bytes]] = None,
    error: Optional[BaseException] = None,
    disconnect: bool = False,
) -> Receive:
    """Create an ASGI receive callable from body bytes or a chunk list."""
    return Receive(chunks if chunks is not None else [body], error=error, disconnect=disconnect)


def make_request(
    body: bytes = b"",
    *,
    content_type: Optional[str] = None,
    boundary: str = BOUNDARY,
    chunks: Optional[List[bytes]] = None,
    error: Optional[BaseException] = None,
    disconnect: bool = False,
    request_id: Optional[str] = None,
) -> Request:
    """Build a Request; defaults to a multipart content type."""
    if content_type is None:
        content_type = f"multipart/form-data; boundary={boundary}"
    scope = make_scope(headers=[("content-type", content_type)])
    request = Request(scope, make_receive(body, chunks=chunks, error=error, disconnect=disconnect))
    if request_id is not None:
        request.state["request_id"] = request_id
    return request


# ============================================================================
# Multipart Helpers
# ============================================================================


def field(name: str, value: str) -> Tuple:
    return ("field", name, value)


def file(
    name: str,
    filename: str,
    data: bytes,
    content_type: Optional[str] = "application/octet-stream",
) -> Tuple:
    return ("file", name, filename, data, content_type)


def build_multipart(parts: Sequence[Tuple], boundary: str = BOUNDARY, *, close: bool = True) -> bytes:
    """Encode ``field(...)`` / ``file(...)`` tuples as a multipart body."""
    out = bytearray()
    for part in parts:
        out += f"--{boundary}\r\n".encode()
        if part[0] == "field":
            _, name, value = part
            out += f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode()
            out += value.encode("utf-8")
        else:
            _, name, filename, data, content_type = part
            out += f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'.encode()
            if content_type:
                out += f"Content-Type: {content_type}\r\n".encode()
            out += b"\r\n"
            out += data
        out += b"\r\n"
    if close:
        out += f"--{boundary}--\r\n".encode()
    return bytes(out)


def split(data: bytes, size: int) -> List[bytes]:
    """Split a body into transport chunks of ``size`` bytes."""
    return [data[i:i + size] for i in range(0, len(data), size)] or [b""]


async def iter_chunks(chunks: Sequence[bytes]):
    for chunk in chunks:
        yield chunk


# ============================================================================
# Relay Sink
# ============================================================================


class RelaySink:
    """
    Local TCP server recording the bytes of every connection.

    With ``reset_after`` set, each connection is reset (RST, not FIN)
    once that many bytes have arrived.
    """

    def __init__(self, reset_after: Optional[int] = None):
        self.reset_after = reset_after
        self.received: List[bytes] = []
        self.server: Optional[asyncio.AbstractServer] = None
        self.port: Optional[int] = None

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        data = bytearray()
        try:
            while True:
                chunk = await reader.read(65536)
                if not chunk:
                    break
                data += chunk
                if self.reset_after is not None and len(data) >= self.reset_after:
                    sock = writer.get_extra_info("socket")
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
                    writer.transport.abort()
                    break
        except (asyncio.CancelledError, ConnectionError):
            pass
        finally:
            self.received.append(bytes(data))
            writer.close()

    async def wait_received(self, count: int = 1, timeout: float = 2.0) -> List[bytes]:
        """Wait until ``count`` connections have been fully read."""
        async def poll():
            while len(self.received) < count:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(poll(), timeout)
        return self.received

    async def __aenter__(self) -> "RelaySink":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc_info):
        self.server.close()
        await self.server.wait_closed()


@pytest.fixture
def upload_dir(tmp_path):
    """A destination directory that does not exist yet."""
    return tmp_path / "uploads" / "nested"
