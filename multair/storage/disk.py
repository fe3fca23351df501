"""
DiskStorage - streams each file into a file on the local filesystem.

Configuration:
- destination: directory path, or ``(request, metadata) -> path``
  (sync or async). Created on demand, recursively.
- filename: ``(request, metadata) -> name`` (sync or async). Defaults to
  32 random hex characters plus the original extension.

Example:
    ```python
    storage = DiskStorage(
        destination=lambda request, meta: f"./uploads/{meta.field_name}",
    )
    ```
"""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
from dataclasses import dataclass
from typing import Any, Optional, Union

import aiofiles
import aiofiles.os

from .._parts import FilePart, PartMetadata, PartStreamError, StoredFile
from ..faults import DirectoryCreationError, StorageError, StorageErrorKind
from .base import ResolverFn, StorageEngine, resolve

logger = logging.getLogger("multair.storage.disk")

DEFAULT_DESTINATION = "./uploads"

_UNSAFE_CHARS = ["<", ">", ":", '"', "/", "\\", "|", "?", "*", "\x00"]


@dataclass
class DiskFile(StoredFile):
    """File written to disk. ``size`` counts the bytes this upload appended."""
    
    directory: str = ""
    filename: str = ""
    path: str = ""


def safe_extension(filename: str) -> str:
    """Extension of the client filename, stripped of path and unsafe characters."""
    _, ext = os.path.splitext(os.path.basename(filename.replace("\\", "/")))
    for char in _UNSAFE_CHARS:
        ext = ext.replace(char, "")
    return ext[:16]


def random_filename(request: Any, metadata: PartMetadata) -> str:
    """Default filename: random hex, original extension kept."""
    return secrets.token_hex(16) + safe_extension(metadata.filename or "")


class DiskStorage(StorageEngine):
    """Writes each file part to ``<destination>/<filename>``."""
    
    name = "disk"
    
    def __init__(
        self,
        destination: Union[str, os.PathLike, ResolverFn, None] = None,
        filename: Optional[ResolverFn] = None,
    ):
        self.destination = destination if destination is not None else DEFAULT_DESTINATION
        self.filename = filename if filename is not None else random_filename
    
    def __repr__(self) -> str:
        return f"DiskStorage(destination={self.destination!r})"
    
    async def store(self, request: Any, part: FilePart) -> DiskFile:
        metadata = part.metadata
        
        try:
            destination = os.fspath(await resolve(self.destination, request, metadata))
        except Exception as exc:
            part.stream.drain()
            raise StorageError(
                "Failed to resolve upload destination",
                StorageErrorKind.DISK,
                filename=metadata.filename,
                cause=exc,
            ) from exc
        
        # Filename resolution may overlap directory creation; writing may not.
        mkdir = asyncio.ensure_future(aiofiles.os.makedirs(destination, exist_ok=True))
        try:
            name = await resolve(self.filename, request, metadata)
            if not isinstance(name, (str, os.PathLike)) or not os.fspath(name):
                raise TypeError(f"filename resolver returned {name!r}, expected a non-empty path")
            name = os.fspath(name)
            path = os.path.join(destination, name)
        except Exception as exc:
            part.stream.drain()
            await asyncio.gather(mkdir, return_exceptions=True)
            raise StorageError(
                "Failed to resolve upload filename",
                StorageErrorKind.DISK,
                filename=metadata.filename,
                cause=exc,
            ) from exc
        except asyncio.CancelledError:
            mkdir.cancel()
            raise
        
        try:
            await mkdir
        except OSError as exc:
            part.stream.drain()
            raise DirectoryCreationError(
                "Failed to create directory for file upload",
                path=destination,
                cause=exc,
            ) from exc
        
        written = await self._write(path, part)
        
        logger.debug("Stored %s at %s (%d bytes)", metadata.filename, path, written)
        return DiskFile(
            metadata=metadata,
            size=written,
            directory=destination,
            filename=name,
            path=path,
        )
    
    async def _write(self, path: str, part: FilePart) -> int:
        """
        Append the part's bytes to ``path``.

        Returns the number of bytes this upload appended. On failure the
        file is cut back to its previous length, or removed if this
        upload created it.
        """
        try:
            offset: Optional[int] = await aiofiles.os.path.getsize(path)
        except FileNotFoundError:
            offset = None
        except OSError as exc:
            part.stream.drain()
            raise StorageError(
                "Failed to write file to disk",
                StorageErrorKind.DISK,
                filename=part.filename,
                cause=exc,
            ) from exc

        written = 0
        completed = False
        try:
            async with aiofiles.open(path, "ab") as out:
                async for chunk in part.stream:
                    await out.write(chunk)
                    written += len(chunk)
            completed = True
        except PartStreamError as exc:
            raise StorageError(
                "File stream error during storage",
                StorageErrorKind.DISK,
                filename=part.filename,
                cause=exc.cause,
            ) from exc
        except OSError as exc:
            part.stream.drain()
            raise StorageError(
                "Failed to write file to disk",
                StorageErrorKind.DISK,
                filename=part.filename,
                cause=exc,
            ) from exc
        finally:
            if not completed:
                await self._remove_partial(path, offset)
        return written

    async def _remove_partial(self, path: str, offset: Optional[int]) -> None:
        try:
            if offset is None:
                await aiofiles.os.remove(path)
            else:
                async with aiofiles.open(path, "r+b") as out:
                    await out.truncate(offset)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove partial upload %s: %s", path, exc)
    
    async def discard(self, request: Any, stored: DiskFile) -> None:
        """Delete the stored file. A file that is already gone counts as removed."""
        try:
            await aiofiles.os.remove(stored.path)
        except FileNotFoundError:
            logger.debug("Already removed: %s", stored.path)
        except OSError as exc:
            raise StorageError(
                "Failed to delete file from disk",
                StorageErrorKind.DELETION,
                filename=stored.filename,
                cause=exc,
            ) from exc
