"""
Config system - typed ingestion options with validation.

Options are validated once, before any request body is read. Invalid
shapes raise ConfigurationError; unknown option names are ignored.

Sources:
- keyword options / mappings (``MultairConfig.from_options``)
- environment variables with a prefix (``MultairConfig.from_env``)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from numbers import Number
from typing import Any, Callable, Dict, Mapping, Optional

from .faults import ConfigurationError
from .storage import MemoryStorage, StorageEngine, create_storage, is_storage_engine

logger = logging.getLogger("multair.config")

# Option spellings accepted for limits, mapped to Limits fields
_LIMIT_ALIASES = {
    "fileSize": "file_size",
    "fieldSize": "field_size",
    "fieldNameSize": "field_name_size",
}


# ============================================================================
# Limits
# ============================================================================

@dataclass
class Limits:
    """
    Bounds applied while parsing. ``None`` means unlimited.
    
    Attributes:
        file_size: Max bytes per file part
        files: Max number of file parts
        fields: Max number of plain fields
        parts: Max number of parts overall
        field_size: Max bytes of a field value (longer values are truncated)
        field_name_size: Max bytes of a field name (longer names are truncated)
    """
    
    file_size: Optional[int] = None
    files: Optional[int] = None
    fields: Optional[int] = None
    parts: Optional[int] = None
    field_size: Optional[int] = 1024 * 1024
    field_name_size: Optional[int] = 100
    
    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "Limits":
        """
        Build limits from a mapping.
        
        Accepts snake_case names and the camelCase spellings
        ``fileSize``, ``fieldSize``, ``fieldNameSize``.
        """
        if mapping is None:
            return cls()
        if isinstance(mapping, Limits):
            return mapping
        if not isinstance(mapping, Mapping):
            raise ConfigurationError("limits option must be a mapping", "limits", mapping)
        
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in mapping.items():
            name = _LIMIT_ALIASES.get(key, key)
            if name not in known:
                logger.debug("Ignoring unknown limit %r", key)
                continue
            values[name] = _check_bound(name, value)
        return cls(**values)
    
    def to_dict(self) -> Dict[str, Optional[int]]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _check_bound(name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, Number) or value < 0:
        raise ConfigurationError(
            f"limits.{name} must be a non-negative number",
            f"limits.{name}",
            value,
        )
    return value


# ============================================================================
# MultairConfig
# ============================================================================

FileFilter = Callable[[Any, Any], Any]


@dataclass
class MultairConfig:
    """
    Validated ingestion configuration.
    
    Attributes:
        limits: Parsing bounds
        file_filter: ``(request, metadata) -> bool`` (may be async);
            raising signals an error
        storage: Engine that receives accepted file parts
    """
    
    limits: Limits = field(default_factory=Limits)
    file_filter: Optional[FileFilter] = None
    storage: StorageEngine = field(default_factory=MemoryStorage)
    
    @classmethod
    def from_options(
        cls,
        limits: Any = None,
        file_filter: Any = None,
        storage: Any = None,
        storage_options: Optional[Mapping[str, Any]] = None,
        **unknown: Any,
    ) -> "MultairConfig":
        """
        Validate raw options and build a config.
        
        ``storage`` is an engine instance, or a factory called with
        ``storage_options``. It defaults to MemoryStorage.
        
        Raises:
            ConfigurationError: If an option has the wrong shape
        """
        if unknown:
            logger.debug("Ignoring unknown options: %s", sorted(unknown))
        
        if limits is not None and not isinstance(limits, (Mapping, Limits)):
            raise ConfigurationError("limits option must be a mapping", "limits", limits)
        
        if file_filter is not None and not callable(file_filter):
            raise ConfigurationError("file_filter option must be callable", "file_filter", file_filter)
        
        if storage_options is not None and not isinstance(storage_options, Mapping):
            raise ConfigurationError(
                "storage_options option must be a mapping", "storage_options", storage_options
            )
        
        return cls(
            limits=Limits.from_mapping(limits),
            file_filter=file_filter,
            storage=_build_storage(storage, storage_options),
        )
    
    @classmethod
    def from_env(
        cls,
        prefix: str = "MULTAIR_",
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> "MultairConfig":
        """
        Build a config from environment variables.
        
        Recognized variables (with the default prefix):
        - MULTAIR_STORAGE: memory | disk | relay
        - MULTAIR_LIMIT_<NAME>: e.g. MULTAIR_LIMIT_FILE_SIZE=1048576
        - MULTAIR_DISK_DESTINATION
        - MULTAIR_RELAY_HOST, MULTAIR_RELAY_PORT,
          MULTAIR_RELAY_CONNECT_TIMEOUT, MULTAIR_RELAY_TRANSFER_TIMEOUT
        
        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ
        
        limits: Dict[str, Any] = {}
        limit_prefix = f"{prefix}LIMIT_"
        for key, raw in env.items():
            if key.startswith(limit_prefix):
                name = key[len(limit_prefix):].lower()
                limits[name] = _parse_number(key, raw)
        
        kind = env.get(f"{prefix}STORAGE", "memory").lower()
        storage_options: Dict[str, Any] = {}
        if kind == "disk" and f"{prefix}DISK_DESTINATION" in env:
            storage_options["destination"] = env[f"{prefix}DISK_DESTINATION"]
        elif kind == "relay":
            for option in ("host", "port", "connect_timeout", "transfer_timeout"):
                key = f"{prefix}RELAY_{option.upper()}"
                if key in env:
                    storage_options[option] = env[key] if option == "host" else _parse_number(key, env[key])
        
        options: Dict[str, Any] = {
            "limits": limits,
            "storage": create_storage(kind, **storage_options),
        }
        options.update(overrides)
        return cls.from_options(**options)


def _parse_number(key: str, raw: str) -> float | int:
    try:
        return int(raw)
    except ValueError:
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be a number", key, raw) from None


def _build_storage(storage: Any, storage_options: Optional[Mapping[str, Any]]) -> StorageEngine:
    if storage is None:
        return MemoryStorage()
    
    if is_storage_engine(storage) and not isinstance(storage, type):
        return storage
    
    if callable(storage):
        try:
            engine = storage(**dict(storage_options or {}))
        except TypeError as exc:
            raise ConfigurationError(
                f"storage factory rejected storage_options: {exc}", "storage_options", storage_options
            ) from exc
        if is_storage_engine(engine):
            return engine
        raise ConfigurationError(
            "storage factory must return an engine with store() and discard()", "storage", engine
        )
    
    raise ConfigurationError(
        "storage option must be a storage engine instance or a factory", "storage", storage
    )
