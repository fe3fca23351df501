"""
Request - ASGI request wrapper for multipart ingestion.

Provides:
- Header and Content-Type access over an ASGI scope
- Single-pass streaming body access over an ASGI receive callable
- Disconnect and transport failure detection (RequestStreamError)
- A per-request ``state`` dict where middleware publishes results
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Optional

from ._datastructures import Headers, ParsedContentType
from .faults import RequestStreamError


class Request:
    """
    Minimal streaming request object.
    
    The body is a single-consumer stream: it is read at most once and
    never buffered here. ``bytes_received`` counts what has been pulled
    from the transport so far.
    """
    
    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[dict]],
        send: Optional[Callable] = None,
    ):
        """
        Initialize Request.
        
        Args:
            scope: ASGI scope dict
            receive: ASGI receive callable
            send: ASGI send callable (optional)
        """
        self.scope = scope
        self._receive = receive
        self._send = send
        
        self.state: Dict[str, Any] = {}
        
        self._headers: Optional[Headers] = None
        self._body_consumed = False
        self._disconnected = False
        self.bytes_received = 0
    
    # ========================================================================
    # Metadata
    # ========================================================================
    
    @property
    def method(self) -> str:
        return self.scope.get("method", "GET")
    
    @property
    def path(self) -> str:
        return self.scope.get("path", "/")
    
    @property
    def headers(self) -> Headers:
        """Case-insensitive request headers."""
        if self._headers is None:
            self._headers = Headers(raw=list(self.scope.get("headers", [])))
        return self._headers
    
    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)
    
    def content_type(self) -> Optional[str]:
        return self.header("content-type")
    
    def parsed_content_type(self) -> Optional[ParsedContentType]:
        return ParsedContentType.parse(self.content_type())
    
    def is_multipart(self) -> bool:
        """True when the body is ``multipart/form-data``."""
        parsed = self.parsed_content_type()
        return bool(parsed and parsed.is_form_data)
    
    @property
    def request_id(self) -> Optional[str]:
        return self.state.get("request_id")
    
    # ========================================================================
    # Body Streaming
    # ========================================================================
    
    def is_disconnected(self) -> bool:
        """Check if client has disconnected."""
        return self._disconnected
    
    async def _receive_message(self) -> dict:
        """
        Receive next ASGI message.
        
        Raises:
            RequestStreamError: On disconnect or transport failure
        """
        try:
            message = await self._receive()
        except asyncio.CancelledError:
            self._disconnected = True
            raise
        except Exception as exc:
            raise RequestStreamError("Request stream error", cause=exc) from exc
        
        if message["type"] == "http.disconnect":
            self._disconnected = True
            raise RequestStreamError("Client disconnected before the body was complete")
        return message
    
    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """
        Stream request body in chunks.
        
        Yields:
            Body chunks as delivered by the transport
        
        Raises:
            RequestStreamError: If the body was already consumed, or the
                client disconnects or the transport fails mid-body
        """
        if self._body_consumed:
            raise RequestStreamError("Request body already consumed")
        self._body_consumed = True
        
        while True:
            message = await self._receive_message()
            
            if message["type"] == "http.request":
                chunk = message.get("body", b"")
                if chunk:
                    self.bytes_received += len(chunk)
                    yield chunk
                
                if not message.get("more_body", False):
                    break
