"""
MultairFaults - Typed failure signals for multipart ingestion.

Failures are not bare exceptions: each one is a structured ``Fault``
with a stable code, a domain, retry semantics and context metadata.

Core exports:
- Fault, FaultContext, FaultDomain, Severity
- the ingestion taxonomy (ConfigurationError ... StorageError)
"""

from .core import (
    Fault,
    FaultContext,
    FaultDomain,
    Severity,
)

from .domains import (
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
    # Core types
    "Fault",
    "FaultContext",
    "FaultDomain",
    "Severity",
    
    # Taxonomy
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
