"""
Multair - Streaming multipart/form-data ingestion for async Python

- Orchestrator: per-request state machine turning part events into a form
- Storage engines: memory, disk (aiofiles) and TCP relay
- Faults: typed failures with stable codes and context
- Middleware: ingestion ahead of the route handler
"""

__version__ = "0.1.0"

from .config import Limits, MultairConfig
from .request import Request
from .orchestrator import Multair, IngestionRun, Phase
from .middleware import MultairMiddleware
from .parser import MultipartEventParser

from ._parts import (
    PartMetadata,
    FileStream,
    PartStreamError,
    FilePart,
    FieldPart,
    StoredFile,
    FormResult,
)

from .storage import (
    StorageEngine,
    MemoryStorage,
    MemoryFile,
    DiskStorage,
    DiskFile,
    RelayStorage,
    RelayReceipt,
    create_storage,
    memory_storage,
    disk_storage,
    relay_storage,
)

from .faults import (
    Fault,
    FaultContext,
    FaultDomain,
    Severity,
    MultairFault,
    ConfigurationError,
    FormParsingError,
    RequestStreamError,
    FileFilterError,
    FileSizeLimitError,
    DirectoryCreationError,
    StorageError,
    StorageErrorKind,
)

__all__ = [
    "__version__",
    # Core
    "Multair",
    "IngestionRun",
    "Phase",
    "MultairConfig",
    "Limits",
    "Request",
    "MultairMiddleware",
    "MultipartEventParser",
    # Parts
    "PartMetadata",
    "FileStream",
    "PartStreamError",
    "FilePart",
    "FieldPart",
    "StoredFile",
    "FormResult",
    # Storage
    "StorageEngine",
    "MemoryStorage",
    "MemoryFile",
    "DiskStorage",
    "DiskFile",
    "RelayStorage",
    "RelayReceipt",
    "create_storage",
    "memory_storage",
    "disk_storage",
    "relay_storage",
    # Faults
    "Fault",
    "FaultContext",
    "FaultDomain",
    "Severity",
    "MultairFault",
    "ConfigurationError",
    "FormParsingError",
    "RequestStreamError",
    "FileFilterError",
    "FileSizeLimitError",
    "DirectoryCreationError",
    "StorageError",
    "StorageErrorKind",
]
