"""
Ingestion orchestrator.

``Multair`` is the public entry point; every call to ``process()`` runs
one ``IngestionRun``, a per-request state machine:

    IDLE -> PARSING -> (FILTERING -> STORING)* -> FINISHING -> DONE | FAILED

The run owns the aggregation state. Parser events are consumed by one
task, each accepted file is stored by its own task, and the terminal
outcome is a future resolved exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Any, Dict, List, Optional, Set

from ._datastructures import ParsedContentType
from ._parts import FieldPart, FilePart, FormResult, StoredFile
from .config import MultairConfig
from .faults import (
    Fault,
    FaultContext,
    FileFilterError,
    FileSizeLimitError,
    Severity,
)
from .parser import MultipartEventParser
from .storage.base import resolve

logger = logging.getLogger("multair.orchestrator")

_SEVERITY_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}


class Phase(str, Enum):
    """Ingestion state of one request."""
    IDLE = "idle"
    PARSING = "parsing"
    FILTERING = "filtering"
    STORING = "storing"
    FINISHING = "finishing"
    DONE = "done"
    FAILED = "failed"


class Multair:
    """
    Multipart ingestion entry point.
    
    Options are validated here, before any request is seen.
    
    Example:
        ```python
        multair = Multair(storage=DiskStorage(destination="/srv/uploads"),
                          limits={"file_size": 10 * 1024 * 1024})
        form = await multair.process(request)
        if form is not None:
            avatar = form.get_file("avatar")
        ```
    """
    
    def __init__(self, config: Optional[MultairConfig] = None, **options: Any):
        """
        Args:
            config: Prebuilt configuration (options are ignored when given)
            **options: ``limits``, ``file_filter``, ``storage``,
                ``storage_options``; see ``MultairConfig.from_options``
        
        Raises:
            ConfigurationError: If an option has the wrong shape
        """
        if config is None:
            config = MultairConfig.from_options(**options)
        elif options:
            logger.debug("Ignoring options %s: explicit config given", sorted(options))
        self.config = config
    
    @classmethod
    def from_env(cls, prefix: str = "MULTAIR_", **overrides: Any) -> "Multair":
        return cls(MultairConfig.from_env(prefix, **overrides))
    
    async def process(self, request: Any) -> Optional[FormResult]:
        """
        Ingest a multipart request.
        
        Returns:
            The sealed FormResult, or None when the request is not
            ``multipart/form-data`` (the body is left untouched)
        
        Raises:
            MultairFault: The single failure that ended ingestion
        """
        content_type = request.parsed_content_type()
        if content_type is None or not content_type.is_form_data:
            logger.debug("Not a multipart request, passing through")
            return None
        
        run = IngestionRun(self.config, request, content_type)
        return await run.execute()
    
    def __repr__(self) -> str:
        return f"Multair(storage={self.config.storage!r}, limits={self.config.limits})"


class IngestionRun:
    """
    State machine for one request.
    
    Attributes:
        phase: Current Phase
        result: Aggregation under construction (sealed on DONE)
    """
    
    def __init__(self, config: MultairConfig, request: Any, content_type: ParsedContentType):
        self.config = config
        self.request = request
        self.content_type = content_type
        self.phase = Phase.IDLE
        self.result = FormResult()
        
        self._outcome: asyncio.Future = asyncio.get_running_loop().create_future()
        self._consumer: Optional[asyncio.Task] = None
        self._store_tasks: Set[asyncio.Task] = set()
        self._slots: Dict[str, List[Optional[StoredFile]]] = {}
        self._engine_tasks: List[asyncio.Future] = []
        self._parsed = False
        self._failed_phase: Optional[Phase] = None
    
    async def execute(self) -> FormResult:
        self.phase = Phase.PARSING
        self._consumer = asyncio.create_task(self._consume())
        try:
            result = await self._outcome
        except BaseException as exc:
            await self._abandon()
            await self._discard_stored(exc)
            if isinstance(exc, Exception):
                self._log_failure(exc)
            raise
        await self._consumer
        return result
    
    # ========================================================================
    # Part events
    # ========================================================================
    
    async def _consume(self) -> None:
        try:
            parser = MultipartEventParser(
                self.request.iter_bytes(),
                self.content_type.boundary,
                self.config.limits,
                charset=self.content_type.charset,
            )
            events = parser.__aiter__()
            try:
                async for part in events:
                    if self._outcome.done():
                        return
                    if isinstance(part, FieldPart):
                        self._on_field(part)
                    else:
                        await self._on_file(part)
            finally:
                await events.aclose()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(exc)
            return
        
        self.phase = Phase.FINISHING
        self._parsed = True
        logger.debug(
            "Body parsed: %d parts, %d stores pending",
            parser.part_count, len(self._store_tasks),
        )
        self._check_finished()
    
    def _on_field(self, part: FieldPart) -> None:
        if part.value_truncated:
            logger.debug("Field %r truncated to %s bytes", part.name, self.config.limits.field_size)
        self.result.set_field(part.name, part.value)
    
    async def _on_file(self, part: FilePart) -> None:
        metadata = part.metadata
        file_filter = self.config.file_filter
        
        if file_filter is not None:
            self.phase = Phase.FILTERING
            try:
                accepted = await resolve(file_filter, self.request, metadata)
            except Exception as exc:
                part.stream.drain()
                raise FileFilterError(
                    f"File filtering error: {exc}",
                    filename=metadata.filename,
                    field_name=metadata.field_name,
                    cause=exc,
                ) from exc
            if not accepted:
                part.stream.drain()
                logger.debug("File rejected by filter: %s - %s", metadata.field_name, metadata.filename)
                self.phase = Phase.PARSING
                return
        
        self.phase = Phase.STORING
        slots = self._slots.setdefault(metadata.field_name, [])
        slots.append(None)
        task = asyncio.create_task(self._store(part))
        self._store_tasks.add(task)
        task.add_done_callback(partial(self._on_store_done, part, len(slots) - 1))
        self.phase = Phase.PARSING
    
    # ========================================================================
    # Storing
    # ========================================================================
    
    async def _store(self, part: FilePart) -> StoredFile:
        """Run the engine's store while watching the part's size limit."""
        store_task = asyncio.ensure_future(self.config.storage.store(self.request, part))
        self._engine_tasks.append(store_task)
        limit_task = asyncio.ensure_future(part.stream.limit_reached.wait())
        try:
            await asyncio.wait({store_task, limit_task}, return_when=asyncio.FIRST_COMPLETED)
            if part.stream.truncated:
                await self._abort_truncated(part, store_task)
                raise FileSizeLimitError(
                    f"File too large: {part.filename}",
                    filename=part.filename,
                    field_name=part.field_name,
                    limit=self.config.limits.file_size,
                )
            return store_task.result()
        finally:
            limit_task.cancel()
            if not store_task.done():
                store_task.cancel()
                await asyncio.gather(store_task, return_exceptions=True)
            # The engine may return before reading to the end; nothing reads the stream after it.
            part.stream.drain()
    
    async def _abort_truncated(self, part: FilePart, store_task: asyncio.Future) -> None:
        part.stream.drain()
        self._engine_tasks.remove(store_task)
        if not store_task.done():
            store_task.cancel()
        outcome = (await asyncio.gather(store_task, return_exceptions=True))[0]
        if isinstance(outcome, BaseException):
            return
        # The engine finished with truncated bytes; drop what it wrote.
        try:
            await self.config.storage.discard(self.request, outcome)
        except Exception as exc:
            logger.warning("Failed to discard truncated file %s: %s", part.filename, exc)
    
    def _on_store_done(self, part: FilePart, index: int, task: asyncio.Task) -> None:
        self._store_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._fail(exc)
            return
        
        stored = task.result()
        self._slots[part.field_name][index] = stored
        logger.debug("File stored: %s - %s (%d bytes)", part.field_name, part.filename, stored.size)
        self._check_finished()
    
    # ========================================================================
    # Terminal outcome
    # ========================================================================
    
    def _check_finished(self) -> None:
        if not self._parsed or self._store_tasks or self._outcome.done():
            return
        
        for name, slots in self._slots.items():
            for stored in slots:
                if stored is not None:
                    self.result.add_file(name, stored)
        
        self.phase = Phase.DONE
        self._outcome.set_result(self.result.seal())
        logger.debug(
            "Ingestion done: %d fields, %d files",
            len(self.result.fields), sum(len(s) for s in self._slots.values()),
        )
    
    def _fail(self, exc: BaseException) -> None:
        if self._outcome.done():
            logger.debug("Ignoring failure after terminal outcome: %r", exc)
            return
        self._failed_phase = self.phase
        self.phase = Phase.FAILED
        self._outcome.set_exception(exc)
    
    async def _abandon(self) -> None:
        """Cancel the consumer and every in-flight store."""
        tasks = [t for t in (self._consumer, *self._store_tasks) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
    
    async def _discard_stored(self, exc: BaseException) -> None:
        """Best-effort removal of files stored before the failure."""
        errors = []
        for task in self._engine_tasks:
            if not task.done() or task.cancelled() or task.exception() is not None:
                continue
            stored = task.result()
            try:
                await self.config.storage.discard(self.request, stored)
            except Exception as discard_exc:
                logger.warning(
                    "Failed to discard %s after failure: %s", stored.original_filename, discard_exc
                )
                errors.append(discard_exc)
        
        if errors and isinstance(exc, Fault):
            exc.metadata["discard_errors"] = [str(e) for e in errors]
    
    def _log_failure(self, exc: Exception) -> None:
        phase = (self._failed_phase or self.phase).value
        if not isinstance(exc, Fault):
            logger.error("Ingestion failed during %s", phase, exc_info=exc)
            return
        
        ctx = FaultContext.capture(
            exc,
            request_id=getattr(self.request, "request_id", None),
            phase=phase,
            cause=getattr(exc, "cause", None),
        )
        logger.log(
            _SEVERITY_LEVELS[exc.severity],
            f"[{exc.domain.value}] {exc.code}: {exc.message}",
            extra={"fault": ctx.to_dict(), "fingerprint": ctx.fingerprint()},
        )
