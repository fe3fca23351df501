"""
Storage engine contract.

A storage engine owns a file part's stream for the duration of one
``store`` call and returns a ``StoredFile`` describing where the bytes
went. ``discard`` undoes a successful store.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from .._parts import FilePart, StoredFile


class StorageEngine(ABC):
    """Abstract base for storage engines."""
    
    name: str = "storage"
    
    @abstractmethod
    async def store(self, request: Any, part: FilePart) -> StoredFile:
        """
        Consume ``part.stream`` and persist or forward its bytes.
        
        Raises:
            StorageError / DirectoryCreationError on failure
        """
    
    @abstractmethod
    async def discard(self, request: Any, stored: StoredFile) -> None:
        """Remove what ``store`` produced."""
    
    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def is_storage_engine(candidate: Any) -> bool:
    """Duck-typed check: callable ``store`` and ``discard``."""
    return (
        callable(getattr(candidate, "store", None))
        and callable(getattr(candidate, "discard", None))
    )


async def resolve(value: Any, *args: Any) -> Any:
    """
    Resolve a configured value.
    
    Callables are invoked with ``args``; awaitables they return are awaited.
    Anything else is returned as-is.
    """
    if callable(value):
        value = value(*args)
    if inspect.isawaitable(value):
        value = await value
    return value


ResolverFn = Callable[..., Any]
