"""
Part types for multipart ingestion.

Provides:
- PartMetadata: immutable description of one part
- FileStream: bounded, single-consumer async byte stream of a file part
- FilePart / FieldPart: part events emitted by the parser
- StoredFile: base descriptor returned by storage engines
- FormResult: per-request aggregation of fields and stored files
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Tuple


# ============================================================================
# Metadata
# ============================================================================

@dataclass(frozen=True)
class PartMetadata:
    """Client-declared metadata of a part. Fixed once the part begins."""
    
    field_name: str
    filename: str = ""
    encoding: str = "7bit"
    content_type: str = "application/octet-stream"


# ============================================================================
# FileStream
# ============================================================================

class PartStreamError(Exception):
    """The producer of a file stream failed before the part ended."""
    
    def __init__(self, cause: BaseException):
        super().__init__(f"File stream failed: {cause}")
        self.cause = cause


_EOF = object()


class FileStream:
    """
    Single-consumer byte stream for one file part.
    
    The parser feeds chunks, the storage engine iterates them. Feeding
    waits for queue space, so a slow consumer slows the request body.
    After ``drain()`` every further chunk is dropped.
    
    Attributes:
        truncated: Set by the parser when the file exceeded ``file_size``
        limit_reached: Event set together with ``truncated``
        bytes_fed: Bytes accepted into the stream
    """
    
    def __init__(self, max_buffered: int = 16):
        self._queue: asyncio.Queue = asyncio.Queue(max_buffered)
        self._claimed = False
        self._discarding = False
        self._ended = False
        self._error: Optional[BaseException] = None
        self.truncated = False
        self.limit_reached = asyncio.Event()
        self.bytes_fed = 0
    
    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------
    
    async def feed(self, chunk: bytes) -> None:
        if self._ended:
            raise RuntimeError("feed() after end of stream")
        self.bytes_fed += len(chunk)
        if self._discarding:
            return
        await self._queue.put(chunk)
    
    async def feed_eof(self) -> None:
        if self._ended:
            return
        self._ended = True
        if not self._discarding:
            await self._queue.put(_EOF)
    
    def feed_error(self, exc: BaseException) -> None:
        """Fail the stream. The consumer sees it before any queued chunk."""
        if self._ended:
            return
        self._ended = True
        self._error = exc
        # A waiting consumer means the queue is empty; wake it up.
        if not self._queue.full():
            self._queue.put_nowait(_EOF)
    
    def mark_truncated(self) -> None:
        self.truncated = True
        self.limit_reached.set()
    
    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    
    @property
    def claimed(self) -> bool:
        return self._claimed
    
    @property
    def ended(self) -> bool:
        return self._ended
    
    def drain(self) -> None:
        """
        Discard buffered and future chunks.
        
        Unblocks a producer waiting for queue space and ends iteration.
        Safe to call more than once.
        """
        self._discarding = True
        while not self._queue.empty():
            self._queue.get_nowait()
    
    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._claimed:
            raise RuntimeError("File stream already has a consumer")
        self._claimed = True
        return self._iterate()
    
    async def _iterate(self) -> AsyncIterator[bytes]:
        while True:
            if self._discarding:
                return
            if self._error is not None:
                raise PartStreamError(self._error)
            item = await self._queue.get()
            if self._error is not None:
                raise PartStreamError(self._error)
            if item is _EOF:
                return
            yield item
    
    async def read(self) -> bytes:
        """Read the whole stream into memory."""
        chunks = []
        async for chunk in self:
            chunks.append(chunk)
        return b"".join(chunks)


# ============================================================================
# Part events
# ============================================================================

@dataclass
class FilePart:
    """A file part: metadata plus the stream of its bytes."""
    
    metadata: PartMetadata
    stream: FileStream
    
    @property
    def field_name(self) -> str:
        return self.metadata.field_name
    
    @property
    def filename(self) -> str:
        return self.metadata.filename


@dataclass
class FieldPart:
    """A plain form field."""
    
    name: str
    value: str
    content_type: str = "text/plain"
    encoding: str = "7bit"
    name_truncated: bool = False
    value_truncated: bool = False


# ============================================================================
# StoredFile
# ============================================================================

@dataclass
class StoredFile:
    """
    Descriptor of a stored file part.
    
    Storage engines subclass this with where the bytes ended up.
    """
    
    metadata: PartMetadata
    size: int
    
    @property
    def field_name(self) -> str:
        return self.metadata.field_name
    
    @property
    def original_filename(self) -> str:
        return self.metadata.filename
    
    @property
    def content_type(self) -> str:
        return self.metadata.content_type
    
    @property
    def encoding(self) -> str:
        return self.metadata.encoding


# ============================================================================
# FormResult
# ============================================================================

@dataclass
class FormResult:
    """
    Parsed form: last value per field name, stored files per field name.
    
    Files keep arrival order within a field. The result is sealed once
    delivered and rejects further mutation.
    """
    
    fields: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, List[StoredFile]] = field(default_factory=dict)
    _sealed: bool = field(default=False, init=False, repr=False, compare=False)
    
    def _check_open(self) -> None:
        if self._sealed:
            raise RuntimeError("FormResult is sealed")
    
    def set_field(self, name: str, value: str) -> None:
        self._check_open()
        self.fields[name] = value
    
    def add_file(self, name: str, stored: StoredFile) -> None:
        self._check_open()
        self.files.setdefault(name, []).append(stored)
    
    def seal(self) -> "FormResult":
        self._sealed = True
        return self
    
    @property
    def sealed(self) -> bool:
        return self._sealed
    
    def get(self, name: str, default: Optional[Any] = None) -> Optional[Any]:
        """
        Get field or file by name.
        
        Returns field value if present, otherwise first file.
        """
        if name in self.fields:
            return self.fields[name]
        files = self.files.get(name)
        if files:
            return files[0]
        return default
    
    def get_field(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.fields.get(name, default)
    
    def get_file(self, name: str) -> Optional[StoredFile]:
        """Get first stored file by field name."""
        files = self.files.get(name, [])
        return files[0] if files else None
    
    def get_all_files(self, name: str) -> List[StoredFile]:
        return list(self.files.get(name, []))
    
    def iter_files(self) -> Iterator[Tuple[str, StoredFile]]:
        for name, stored in self.files.items():
            for item in stored:
                yield name, item
