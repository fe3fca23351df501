"""
Core data structures for request inspection.

Provides:
- Headers: Case-insensitive header access over raw ASGI header pairs
- ParsedContentType: Content-Type parsing helper
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple


# ============================================================================
# Headers
# ============================================================================

@dataclass
class Headers:
    """
    Case-insensitive header access with raw preservation.
    
    Normalizes header names while preserving original casing.
    """
    
    raw: List[Tuple[bytes, bytes]] = field(default_factory=list)
    _index: Dict[str, List[Tuple[bytes, bytes]]] = field(default_factory=dict, init=False, repr=False)
    
    def __post_init__(self):
        """Build case-insensitive index."""
        self._index = {}
        for name, value in self.raw:
            key = name.decode("latin-1").lower()
            self._index.setdefault(key, []).append((name, value))
    
    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        pairs = self._index.get(name.lower())
        if pairs:
            return pairs[0][1].decode("latin-1")
        return default
    
    def get_all(self, name: str) -> List[str]:
        """Get all values for header (case-insensitive)."""
        pairs = self._index.get(name.lower(), [])
        return [value.decode("latin-1") for _, value in pairs]
    
    def items(self) -> Iterator[Tuple[str, str]]:
        for name, value in self.raw:
            yield name.decode("latin-1"), value.decode("latin-1")
    
    def __contains__(self, name: str) -> bool:
        return name.lower() in self._index
    
    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value
    
    def __repr__(self) -> str:
        return f"Headers({list(self.items())})"


# ============================================================================
# ParsedContentType
# ============================================================================

@dataclass
class ParsedContentType:
    """
    Parsed Content-Type header.
    
    Extracts media type and parameters (charset, boundary).
    """
    
    media_type: str
    params: Dict[str, str] = field(default_factory=dict)
    
    @classmethod
    def parse(cls, content_type: Optional[str]) -> Optional["ParsedContentType"]:
        """Parse Content-Type header."""
        if not content_type:
            return None
        
        parts = content_type.split(";")
        media_type = parts[0].strip().lower()
        
        params = {}
        for part in parts[1:]:
            if "=" in part:
                key, value = part.split("=", 1)
                params[key.strip().lower()] = value.strip().strip('"')
        
        return cls(media_type=media_type, params=params)
    
    @property
    def charset(self) -> str:
        """Get charset parameter (default: utf-8)."""
        return self.params.get("charset", "utf-8")
    
    @property
    def boundary(self) -> Optional[str]:
        """Get boundary parameter (for multipart)."""
        return self.params.get("boundary")
    
    @property
    def is_form_data(self) -> bool:
        return self.media_type == "multipart/form-data"
