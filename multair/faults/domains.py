"""
MultairFaults - Ingestion fault taxonomy.

Every failure surfaced by an ingestion run is one of:
- ConfigurationError: invalid option shape (raised before any I/O)
- FormParsingError: malformed multipart framing
- RequestStreamError: the request transport failed
- FileFilterError: the acceptance predicate errored
- FileSizeLimitError: a file part exceeded the configured byte limit
- DirectoryCreationError: disk destination could not be created
- StorageError: a storage engine failed (see StorageErrorKind)
"""

from enum import Enum
from typing import Any, Optional

from .core import Fault, FaultDomain, Severity


class MultairFault(Fault):
    """
    Base class for all ingestion faults.
    
    Keeps the wrapped exception on ``cause`` and mirrors the typed
    attributes into ``metadata`` so ``to_dict()`` carries them.
    """
    
    def __init__(
        self,
        code: str,
        message: str,
        *,
        domain: FaultDomain,
        cause: Optional[BaseException] = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ):
        metadata = dict(metadata or {})
        if cause is not None:
            metadata["cause"] = cause
        super().__init__(
            code=code,
            message=message,
            domain=domain,
            severity=severity,
            retryable=retryable,
            public=public,
            metadata=metadata,
        )
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


# ============================================================================
# CONFIG
# ============================================================================

class ConfigurationError(MultairFault):
    """An option has the wrong shape. Fix the configuration, do not retry."""
    
    def __init__(self, message: str, option_name: str, option_value: Any = None):
        super().__init__(
            code="INVALID_OPTION",
            message=message,
            domain=FaultDomain.CONFIG,
            public=False,
            metadata={"option_name": option_name, "option_value": repr(option_value)},
        )
        self.option_name = option_name
        self.option_value = option_value


# ============================================================================
# REQUEST
# ============================================================================

class FormParsingError(MultairFault):
    """The multipart body could not be parsed."""
    
    def __init__(self, message: str = "Form parsing error", cause: Optional[BaseException] = None):
        super().__init__(
            code="FORM_PARSING_ERROR",
            message=message,
            domain=FaultDomain.PARSING,
            cause=cause,
        )


class RequestStreamError(MultairFault):
    """The request body stream failed. Retryable by re-sending the request."""
    
    def __init__(self, message: str = "Request stream error", cause: Optional[BaseException] = None):
        super().__init__(
            code="REQUEST_STREAM_ERROR",
            message=message,
            domain=FaultDomain.IO,
            cause=cause,
        )


# ============================================================================
# FILE PARTS
# ============================================================================

class FileFilterError(MultairFault):
    """The file acceptance predicate signalled an error."""
    
    def __init__(
        self,
        message: str = "File filtering error",
        filename: Optional[str] = None,
        field_name: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            code="FILE_FILTER_ERROR",
            message=message,
            domain=FaultDomain.FILTER,
            cause=cause,
            metadata={"filename": filename, "field_name": field_name},
        )
        self.filename = filename
        self.field_name = field_name


class FileSizeLimitError(MultairFault):
    """A file part exceeded the configured ``file_size`` limit."""
    
    def __init__(
        self,
        message: str = "File size limit exceeded",
        filename: Optional[str] = None,
        field_name: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        metadata: dict[str, Any] = {"filename": filename, "field_name": field_name}
        if limit is not None:
            metadata["limit"] = limit
        super().__init__(
            code="FILE_SIZE_LIMIT",
            message=message,
            domain=FaultDomain.LIMIT,
            metadata=metadata,
        )
        self.filename = filename
        self.field_name = field_name
        self.limit = limit


# ============================================================================
# STORAGE
# ============================================================================

class DirectoryCreationError(MultairFault):
    """The disk engine could not create the destination directory."""
    
    def __init__(
        self,
        message: str = "Failed to create directory for file upload",
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            code="DIRECTORY_CREATION_ERROR",
            message=message,
            domain=FaultDomain.STORAGE,
            cause=cause,
            public=False,
            metadata={"path": path},
        )
        self.path = path


class StorageErrorKind(str, Enum):
    """Which storage operation failed."""
    MEMORY = "memory"
    DISK = "disk"
    DELETION = "deletion"
    CONNECTION = "connection"
    RELAY_READ = "relay-read"
    RELAY_WRITE = "relay-write"


_STORAGE_CODES = {
    StorageErrorKind.MEMORY: "MEMORY_STORAGE_ERROR",
    StorageErrorKind.DISK: "DISK_STORAGE_ERROR",
    StorageErrorKind.DELETION: "FILE_DELETION_ERROR",
    StorageErrorKind.CONNECTION: "RELAY_CONNECTION_ERROR",
    StorageErrorKind.RELAY_READ: "RELAY_READ_ERROR",
    StorageErrorKind.RELAY_WRITE: "RELAY_WRITE_ERROR",
}


class StorageError(MultairFault):
    """
    A storage engine failed to store or discard a file.
    
    Only connection-phase failures are retryable: nothing left the
    process yet. A mid-transfer failure may have delivered a truncated
    stream to the remote end.
    """
    
    def __init__(
        self,
        message: str,
        kind: StorageErrorKind,
        filename: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        kind = StorageErrorKind(kind)
        super().__init__(
            code=_STORAGE_CODES[kind],
            message=message,
            domain=FaultDomain.STORAGE,
            cause=cause,
            retryable=kind is StorageErrorKind.CONNECTION,
            public=False,
            metadata={"kind": kind.value, "filename": filename},
        )
        self.kind = kind
        self.filename = filename
