"""
Storage engines.

Provides:
- StorageEngine: the store/discard contract
- MemoryStorage, DiskStorage, RelayStorage
- create_storage: engine factory keyed by name
- memory_storage / disk_storage / relay_storage shortcuts
"""

from typing import Any, Dict, Type

from ..faults import ConfigurationError
from .base import StorageEngine, is_storage_engine, resolve
from .memory import MemoryFile, MemoryStorage
from .disk import DiskFile, DiskStorage, random_filename, safe_extension
from .relay import RelayReceipt, RelayStorage, TransferTimeout

STORAGE_ENGINES: Dict[str, Type[StorageEngine]] = {
    "memory": MemoryStorage,
    "disk": DiskStorage,
    "relay": RelayStorage,
}


def create_storage(kind: str = "memory", **options: Any) -> StorageEngine:
    """
    Build a storage engine by name.
    
    Args:
        kind: One of ``memory``, ``disk``, ``relay``
        **options: Engine constructor options
    
    Raises:
        ConfigurationError: For an unknown kind or bad options
    """
    engine_cls = STORAGE_ENGINES.get(str(kind).lower())
    if engine_cls is None:
        raise ConfigurationError(
            f"Unknown storage engine '{kind}' (expected one of {sorted(STORAGE_ENGINES)})",
            "storage",
            kind,
        )
    try:
        return engine_cls(**options)
    except TypeError as exc:
        raise ConfigurationError(
            f"Invalid options for {engine_cls.__name__}: {exc}",
            "storage_options",
            options,
        ) from exc


def memory_storage() -> MemoryStorage:
    return MemoryStorage()


def disk_storage(**options: Any) -> DiskStorage:
    return DiskStorage(**options)


def relay_storage(**options: Any) -> RelayStorage:
    return RelayStorage(**options)


__all__ = [
    "StorageEngine",
    "is_storage_engine",
    "resolve",
    "MemoryFile",
    "MemoryStorage",
    "DiskFile",
    "DiskStorage",
    "random_filename",
    "safe_extension",
    "RelayReceipt",
    "RelayStorage",
    "TransferTimeout",
    "STORAGE_ENGINES",
    "create_storage",
    "memory_storage",
    "disk_storage",
    "relay_storage",
]
