"""
MultairFaults - Core types.

Defines:
- Fault base class (structured fault objects)
- FaultContext (runtime context wrapper)
- FaultDomain (explicit fault domains)
- Severity levels
"""

from __future__ import annotations

import sys
import time
import hashlib
import traceback
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Optional
from datetime import datetime, timezone


# ============================================================================
# Severity & Domain
# ============================================================================

class Severity(str, Enum):
    """
    Fault severity levels.
    
    Determines the level a fault is logged at.
    """
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain:
    """
    Fault domains (taxonomy).
    
    Identifies the functional area where a fault occurred.
    """
    
    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.value = name
        self.description = description
    
    def __str__(self) -> str:
        return self.name
    
    def __repr__(self) -> str:
        return f"FaultDomain(name='{self.name}')"
    
    def __eq__(self, other: Any) -> bool:
        if isinstance(other, FaultDomain):
            return self.name == other.name
        return str(self) == str(other)
    
    def __hash__(self) -> int:
        return hash(self.name)


# Standard Domains
FaultDomain.CONFIG = FaultDomain("config", "Configuration errors")
FaultDomain.PARSING = FaultDomain("parsing", "Multipart framing errors")
FaultDomain.IO = FaultDomain("io", "Request transport errors")
FaultDomain.FILTER = FaultDomain("filter", "File acceptance errors")
FaultDomain.LIMIT = FaultDomain("limit", "Configured bound exceeded")
FaultDomain.STORAGE = FaultDomain("storage", "Storage engine errors")


# Domain defaults
DOMAIN_DEFAULTS = {
    FaultDomain.CONFIG: {"severity": Severity.FATAL, "retryable": False},
    FaultDomain.PARSING: {"severity": Severity.WARN, "retryable": False},
    FaultDomain.IO: {"severity": Severity.WARN, "retryable": True},
    FaultDomain.FILTER: {"severity": Severity.WARN, "retryable": False},
    FaultDomain.LIMIT: {"severity": Severity.WARN, "retryable": False},
    FaultDomain.STORAGE: {"severity": Severity.ERROR, "retryable": False},
}


# ============================================================================
# Fault - Base Class
# ============================================================================

class Fault(Exception):
    """
    Base fault class - structured, typed fault object.
    
    A fault carries:
    - Stable machine-readable code
    - Human-readable message
    - Severity level
    - Domain classification
    - Retry semantics
    - Public exposure control
    
    Attributes:
        code: Stable machine-readable identifier (e.g., "FILE_SIZE_LIMIT")
        message: Human-readable summary
        severity: Fault severity (INFO, WARN, ERROR, FATAL)
        domain: Fault domain (CONFIG, STORAGE, ...)
        retryable: Whether the failed operation can be retried
        public: Whether safe to expose to client
        metadata: Additional context data
    
    Example:
        ```python
        raise Fault(
            code="UPLOAD_REJECTED",
            message="Upload rejected by policy",
            domain=FaultDomain.FILTER,
            public=True,
        )
        ```
    """
    
    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        public: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        # Fallback to class attributes if not provided
        self.code = code if code is not None else getattr(self, "code", None)
        self.message = message if message is not None else getattr(self, "message", None)
        self.domain = domain if domain is not None else getattr(self, "domain", None)

        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{self.__class__.__name__} missing required code, message, or domain")

        super().__init__(self.message)
        
        defaults = DOMAIN_DEFAULTS.get(self.domain, {"severity": Severity.ERROR, "retryable": False})
        self.severity = severity or defaults["severity"]
        self.retryable = retryable if retryable is not None else defaults["retryable"]
        
        self.public = public
        self.metadata = metadata or {}
    
    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
    
    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value}, public={self.public})"
        )
    
    def to_dict(self) -> dict[str, Any]:
        """
        Serialize fault to dictionary.
        
        Returns:
            Dictionary representation suitable for logging/serialization
        """
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "public": self.public,
            "metadata": {k: _plain(v) for k, v in self.metadata.items()},
        }


def _plain(value: Any) -> Any:
    """Render exceptions and other objects in metadata as strings."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


# ============================================================================
# FaultContext - Runtime Context Wrapper
# ============================================================================

@dataclass(slots=True)
class FaultContext:
    """
    Runtime context wrapper for faults.
    
    Attributes:
        fault: The underlying fault
        trace_id: Unique trace ID for this fault occurrence
        timestamp: When fault was captured
        request_id: Request ID (if known)
        phase: Ingestion phase the fault terminated
        cause: Original exception (if fault wraps an exception)
        stack: Stack frames from fault origin
        metadata: Additional runtime metadata
    """
    
    fault: Fault
    trace_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    
    request_id: Optional[str] = None
    phase: Optional[str] = None
    
    cause: Optional[BaseException] = None
    stack: list[Any] = field(default_factory=list)
    
    metadata: dict[str, Any] = field(default_factory=dict)
    
    @classmethod
    def capture(
        cls,
        fault: Fault,
        *,
        request_id: Optional[str] = None,
        phase: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> FaultContext:
        """
        Capture fault with runtime context.
        
        Automatically extracts stack trace and generates trace ID.
        
        Args:
            fault: Fault to capture
            request_id: Request ID
            phase: Ingestion phase name
            cause: Original exception (defaults to the fault's ``__cause__``)
        
        Returns:
            FaultContext with captured runtime information
        """
        trace_data = f"{fault.code}:{time.time_ns()}"
        trace_id = hashlib.sha256(trace_data.encode()).hexdigest()[:16]
        
        cause = cause if cause is not None else fault.__cause__
        
        stack = []
        if cause is not None and cause.__traceback__ is not None:
            stack = traceback.extract_tb(cause.__traceback__)
        elif fault.__traceback__ is not None:
            stack = traceback.extract_tb(fault.__traceback__)
        elif sys.exc_info()[2] is not None:
            stack = traceback.extract_tb(sys.exc_info()[2])
        
        return cls(
            fault=fault,
            trace_id=trace_id,
            request_id=request_id,
            phase=phase,
            cause=cause,
            stack=stack,
        )
    
    def fingerprint(self) -> str:
        """
        Generate stable fingerprint for this fault occurrence.
        
        Fingerprint = hash(code + domain + phase). Used to group
        similar failures across requests.
        
        Returns:
            16-character hex fingerprint
        """
        data = ":".join([
            self.fault.code,
            self.fault.domain.value,
            self.phase or "",
        ])
        return hashlib.sha256(data.encode()).hexdigest()[:16]
    
    def to_dict(self) -> dict[str, Any]:
        """Serialize context to dictionary."""
        return {
            "fault": self.fault.to_dict(),
            "trace_id": self.trace_id,
            "fingerprint": self.fingerprint(),
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "phase": self.phase,
            "cause": str(self.cause) if self.cause else None,
            "stack_depth": len(self.stack),
            "metadata": self.metadata,
        }
    
    def __str__(self) -> str:
        scope = f"request={self.request_id}" if self.request_id else "global"
        return f"FaultContext[{self.trace_id}]({scope}): {self.fault}"
