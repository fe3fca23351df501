"""
Multipart event parser.

Adapts python-multipart's callback parser into an async iterator of part
events:

- ``FieldPart`` for every plain field
- ``FilePart`` for every file, emitted before any of its bytes; the bytes
  are then fed into ``FilePart.stream``
- exhaustion of the iterator means the closing boundary was seen
- ``FormParsingError`` / ``RequestStreamError`` end it with an error

Feeding a file stream waits for queue space, so the request body is read
no faster than storage consumes it.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Deque, Dict, List, Optional, Tuple, Union

from python_multipart import MultipartParser
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import parse_options_header

from ._parts import FieldPart, FilePart, FileStream, PartMetadata
from .config import Limits
from .faults import Fault, FormParsingError, RequestStreamError

logger = logging.getLogger("multair.parser")

Part = Union[FieldPart, FilePart]


@dataclass
class _FieldState:
    name: str
    name_truncated: bool
    content_type: str
    encoding: str
    data: bytearray = field(default_factory=bytearray)
    truncated: bool = False


@dataclass
class _FileState:
    stream: FileStream
    size: int = 0
    truncated: bool = False


_SKIP = object()


class MultipartEventParser:
    """
    Async iterator of part events over a multipart body.
    
    Args:
        body: Async iterable of body chunks
        boundary: Multipart boundary from the Content-Type header
        limits: Parsing bounds
        charset: Charset used to decode field names and values
        max_buffered: Chunks a file stream buffers before feeding waits
    """
    
    def __init__(
        self,
        body: AsyncIterable[bytes],
        boundary: Union[str, bytes],
        limits: Optional[Limits] = None,
        *,
        charset: str = "utf-8",
        max_buffered: int = 16,
    ):
        if not boundary:
            raise FormParsingError("Multipart: Boundary not found")
        self._body = body
        self.boundary = boundary.encode("latin-1") if isinstance(boundary, str) else boundary
        self.limits = limits or Limits()
        self.charset = charset
        self.max_buffered = max_buffered
        
        self.part_count = 0
        self.file_count = 0
        self.field_count = 0
        self._streams: List[FileStream] = []
        self._warned: set = set()
    
    def __aiter__(self) -> AsyncIterator[Part]:
        return self._events()
    
    # ========================================================================
    # Event loop
    # ========================================================================
    
    async def _events(self) -> AsyncIterator[Part]:
        actions: Deque[Tuple[Any, ...]] = deque()
        ended = [False]
        parser = MultipartParser(self.boundary, self._callbacks(actions, ended))
        body = self._body.__aiter__()
        
        try:
            while True:
                try:
                    chunk = await body.__anext__()
                except StopAsyncIteration:
                    break
                except Fault:
                    raise
                except Exception as exc:
                    raise RequestStreamError("Request stream error", cause=exc) from exc
                
                try:
                    parser.write(chunk)
                except MultipartParseError as exc:
                    raise FormParsingError(f"Form parsing error: {exc}", cause=exc) from exc
                
                while actions:
                    event = await self._apply(actions.popleft())
                    if event is not None:
                        yield event
            
            parser.finalize()
            while actions:
                event = await self._apply(actions.popleft())
                if event is not None:
                    yield event
            
            if not ended[0]:
                raise FormParsingError("Unexpected end of form")
        except BaseException as exc:
            self._fail_open_streams(exc)
            raise
    
    async def _apply(self, action: Tuple[Any, ...]) -> Optional[Part]:
        kind = action[0]
        if kind == "data":
            await action[1].feed(action[2])
        elif kind == "eof":
            await action[1].feed_eof()
        elif kind == "limit":
            action[1].mark_truncated()
        else:
            return action[1]
        return None
    
    def _fail_open_streams(self, exc: BaseException) -> None:
        if not isinstance(exc, Exception):
            exc = FormParsingError("Form parsing aborted")
        for stream in self._streams:
            if not stream.ended:
                stream.feed_error(exc)
    
    def _warn_once(self, key: str, message: str, *args: Any) -> None:
        if key not in self._warned:
            self._warned.add(key)
            logger.warning(message, *args)
    
    # ========================================================================
    # python-multipart callbacks
    # ========================================================================
    
    def _callbacks(self, actions: Deque[Tuple[Any, ...]], ended: List[bool]) -> Dict[str, Any]:
        header_state = {
            "field": bytearray(),
            "value": bytearray(),
            "headers": {},
        }
        current: List[Any] = [None]
        
        def on_part_begin():
            current[0] = None
            header_state["field"] = bytearray()
            header_state["value"] = bytearray()
            header_state["headers"] = {}
        
        def on_header_field(data: bytes, start: int, end: int):
            header_state["field"].extend(data[start:end])
        
        def on_header_value(data: bytes, start: int, end: int):
            header_state["value"].extend(data[start:end])
        
        def on_header_end():
            if header_state["field"]:
                name = header_state["field"].decode("latin-1").lower()
                header_state["headers"][name] = bytes(header_state["value"])
            header_state["field"] = bytearray()
            header_state["value"] = bytearray()
        
        def on_headers_finished():
            current[0] = self._begin_part(header_state["headers"], actions)
        
        def on_part_data(data: bytes, start: int, end: int):
            state = current[0]
            if state is None or state is _SKIP:
                return
            chunk = data[start:end]
            if isinstance(state, _FileState):
                self._file_data(state, chunk, actions)
            else:
                self._field_data(state, chunk)
        
        def on_part_end():
            state = current[0]
            current[0] = None
            if isinstance(state, _FileState):
                actions.append(("eof", state.stream))
            elif isinstance(state, _FieldState):
                actions.append(("field", FieldPart(
                    name=state.name,
                    value=state.data.decode(self.charset, errors="replace"),
                    content_type=state.content_type,
                    encoding=state.encoding,
                    name_truncated=state.name_truncated,
                    value_truncated=state.truncated,
                )))
        
        def on_end():
            ended[0] = True
        
        return {
            "on_part_begin": on_part_begin,
            "on_part_data": on_part_data,
            "on_part_end": on_part_end,
            "on_header_field": on_header_field,
            "on_header_value": on_header_value,
            "on_header_end": on_header_end,
            "on_headers_finished": on_headers_finished,
            "on_end": on_end,
        }
    
    def _decode(self, value: Optional[bytes]) -> Optional[str]:
        if value is None:
            return None
        return value.decode(self.charset, errors="replace")
    
    def _begin_part(self, headers: Dict[str, bytes], actions: Deque[Tuple[Any, ...]]) -> Any:
        limits = self.limits
        self.part_count += 1
        if limits.parts is not None and self.part_count > limits.parts:
            self._warn_once("parts", "Parts limit (%s) reached, skipping remaining parts", limits.parts)
            return _SKIP
        
        _, options = parse_options_header(headers.get("content-disposition"))
        name = self._decode(options.get(b"name"))
        filename = self._decode(options.get(b"filename"))
        content_type = self._decode(headers.get("content-type"))
        encoding = self._decode(headers.get("content-transfer-encoding")) or "7bit"
        
        if name is None:
            logger.debug("Skipping part without a name")
            return _SKIP
        
        if filename is not None:
            self.file_count += 1
            if limits.files is not None and self.file_count > limits.files:
                self._warn_once("files", "Files limit (%s) reached, skipping remaining files", limits.files)
                return _SKIP
            
            metadata = PartMetadata(
                field_name=name,
                filename=filename,
                encoding=encoding,
                content_type=content_type or "application/octet-stream",
            )
            stream = FileStream(self.max_buffered)
            self._streams.append(stream)
            actions.append(("file", FilePart(metadata=metadata, stream=stream)))
            logger.debug("File received: %s - %s", name, filename)
            return _FileState(stream=stream)
        
        self.field_count += 1
        if limits.fields is not None and self.field_count > limits.fields:
            self._warn_once("fields", "Fields limit (%s) reached, skipping remaining fields", limits.fields)
            return _SKIP
        
        name_truncated = False
        if limits.field_name_size is not None:
            raw = name.encode(self.charset)
            if len(raw) > limits.field_name_size:
                name = raw[:int(limits.field_name_size)].decode(self.charset, errors="ignore")
                name_truncated = True
        
        return _FieldState(
            name=name,
            name_truncated=name_truncated,
            content_type=content_type or "text/plain",
            encoding=encoding,
        )
    
    def _file_data(self, state: _FileState, chunk: bytes, actions: Deque[Tuple[Any, ...]]) -> None:
        if state.truncated:
            return
        limit = self.limits.file_size
        if limit is not None and state.size + len(chunk) > limit:
            keep = max(int(limit - state.size), 0)
            if keep:
                actions.append(("data", state.stream, chunk[:keep]))
                state.size += keep
            state.truncated = True
            actions.append(("limit", state.stream))
            return
        state.size += len(chunk)
        actions.append(("data", state.stream, chunk))
    
    def _field_data(self, state: _FieldState, chunk: bytes) -> None:
        if state.truncated:
            return
        limit = self.limits.field_size
        if limit is not None and len(state.data) + len(chunk) > limit:
            state.data.extend(chunk[:max(int(limit - len(state.data)), 0)])
            state.truncated = True
            return
        state.data.extend(chunk)
