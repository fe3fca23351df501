"""
RelayStorage - forwards each file's bytes to a remote TCP endpoint.

Nothing is kept locally: the bytes are piped into a fresh connection per
file and the connection is closed when the part ends.

Two independent timeouts:
- connect_timeout bounds connection establishment
- transfer_timeout bounds the whole byte transfer once connected

Failures are split by phase so callers can decide on retries:
- CONNECTION: nothing was sent, retryable
- RELAY_READ: the upload stream failed mid-transfer
- RELAY_WRITE: the connection failed (or timed out) mid-transfer; the
  remote end may hold a truncated file
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .._parts import FilePart, PartStreamError, StoredFile
from ..faults import StorageError, StorageErrorKind
from .base import StorageEngine

logger = logging.getLogger("multair.storage.relay")

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 9999
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_TRANSFER_TIMEOUT = 30.0


@dataclass
class RelayReceipt(StoredFile):
    """Record of a completed relay. ``size`` is the byte count sent."""
    
    remote_host: str = DEFAULT_HOST
    remote_port: int = DEFAULT_PORT
    
    @property
    def bytes_transferred(self) -> int:
        return self.size


class TransferTimeout(TimeoutError):
    """The transfer timeout elapsed and the connection was aborted."""


class RelayStorage(StorageEngine):
    """Pipes each file part into its own TCP connection."""
    
    name = "relay"
    
    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        transfer_timeout: float = DEFAULT_TRANSFER_TIMEOUT,
    ):
        self.host = host or DEFAULT_HOST
        self.port = int(port or DEFAULT_PORT)
        self.connect_timeout = connect_timeout
        self.transfer_timeout = transfer_timeout
    
    def __repr__(self) -> str:
        return f"RelayStorage(host={self.host!r}, port={self.port})"
    
    async def store(self, request: Any, part: FilePart) -> RelayReceipt:
        writer = await self._connect(part)
        logger.info("Relay connection established to %s:%s", self.host, self.port)
        
        progress = [0]
        completed = False
        # asyncio.wait leaves socket-level TimeoutErrors to the OSError branch.
        pump = asyncio.ensure_future(self._pump(part, writer, progress))
        try:
            done, _ = await asyncio.wait({pump}, timeout=self.transfer_timeout)
            if not done:
                pump.cancel()
                await asyncio.gather(pump, return_exceptions=True)
                part.stream.drain()
                cause = TransferTimeout(f"Relay transfer exceeded {self.transfer_timeout}s")
                raise StorageError(
                    "Relay connection error during file transfer",
                    StorageErrorKind.RELAY_WRITE,
                    filename=part.filename,
                    cause=cause,
                ) from cause
            pump.result()
            completed = True
        except PartStreamError as exc:
            raise StorageError(
                "Error reading file stream for relay transfer",
                StorageErrorKind.RELAY_READ,
                filename=part.filename,
                cause=exc.cause,
            ) from exc
        except OSError as exc:
            part.stream.drain()
            raise StorageError(
                "Relay connection error during file transfer",
                StorageErrorKind.RELAY_WRITE,
                filename=part.filename,
                cause=exc,
            ) from exc
        finally:
            if not pump.done():
                pump.cancel()
                await asyncio.gather(pump, return_exceptions=True)
            if not completed:
                writer.transport.abort()
        
        logger.info(
            "Relay transfer finished for %s, %d bytes", part.filename, progress[0]
        )
        return RelayReceipt(
            metadata=part.metadata,
            size=progress[0],
            remote_host=self.host,
            remote_port=self.port,
        )
    
    async def _connect(self, part: FilePart) -> asyncio.StreamWriter:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout,
            )
        except (asyncio.TimeoutError, OSError) as exc:
            part.stream.drain()
            raise StorageError(
                f"Failed to connect to relay server at {self.host}:{self.port}",
                StorageErrorKind.CONNECTION,
                filename=part.filename,
                cause=exc,
            ) from exc
        return writer
    
    async def _pump(self, part: FilePart, writer: asyncio.StreamWriter, progress: list) -> None:
        async for chunk in part.stream:
            writer.write(chunk)
            await writer.drain()
            progress[0] += len(chunk)
        
        if writer.can_write_eof():
            writer.write_eof()
        writer.close()
        await writer.wait_closed()
    
    async def discard(self, request: Any, stored: RelayReceipt) -> None:
        """No-op: relayed bytes have no local artifact."""
        logger.debug("RelayStorage.discard is a no-op for %s", stored.original_filename)
