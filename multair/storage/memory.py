"""
MemoryStorage - keeps each file in one contiguous buffer.

Suited to small uploads processed directly in memory; large or numerous
uploads exhaust memory, prefer DiskStorage there.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .._parts import FilePart, PartStreamError, StoredFile
from ..faults import StorageError, StorageErrorKind
from .base import StorageEngine

logger = logging.getLogger("multair.storage.memory")


@dataclass
class MemoryFile(StoredFile):
    """File bytes held in memory. ``buffer`` is None once discarded."""
    
    buffer: Optional[bytes] = None


class MemoryStorage(StorageEngine):
    """Accumulates every chunk of the part into a single ``bytes`` buffer."""
    
    name = "memory"
    
    async def store(self, request: Any, part: FilePart) -> MemoryFile:
        buffer = bytearray()
        try:
            async for chunk in part.stream:
                buffer.extend(chunk)
        except PartStreamError as exc:
            raise StorageError(
                "Error reading file stream into memory",
                StorageErrorKind.MEMORY,
                filename=part.filename,
                cause=exc.cause,
            ) from exc
        
        logger.debug("Buffered %s (%d bytes)", part.filename, len(buffer))
        return MemoryFile(metadata=part.metadata, size=len(buffer), buffer=bytes(buffer))
    
    async def discard(self, request: Any, stored: MemoryFile) -> None:
        stored.buffer = None
