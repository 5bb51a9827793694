"""
Core record types for the context store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class ContextRecord:
    key: str
    value: Any
    metadata: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ContextInput:
    """A validated, normalized write request."""
    key: str
    value: Any
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "value": self.value, "metadata": self.metadata}


@dataclass
class FieldError:
    field: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "message": self.message}


@dataclass
class BatchItemResult:
    key: str
    value: Any
    metadata: Optional[Dict[str, Any]]
    operation: str  # create | update
    status: str = "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "metadata": self.metadata,
            "status": self.status,
            "operation": self.operation,
        }


@dataclass
class BatchResult:
    items: list = field(default_factory=list)
    total: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status == "success")
