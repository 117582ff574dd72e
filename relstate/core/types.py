from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Sequence, Tuple, Union

# A schema map is keyed by schema name; each value is the still-normalized
# collection of records for that schema, keyed by record id.
SchemaMap = Dict[str, Optional[Mapping[Any, Any]]]
SchemaPath = Union[str, Sequence[Any]]
SchemaPaths = Mapping[str, SchemaPath]
StoreAccessor = Callable[[], Any]
# Item keys are (type, str(id)); single references and collections are keyed
# by (CacheEntryKind, token).
CacheKey = Hashable


class ResolutionKind(Enum):
    RESOLVED = "resolved"
    MISSING = "missing"
    CYCLIC = "cyclic"
    TOO_DEEP = "too_deep"


class StorageMode(Enum):
    FIND_STORAGE = "find_storage"
    PROVIDE_STORAGE = "provide_storage"


class CacheEntryKind(Enum):
    ITEM = "item"
    ONE = "one"
    COLLECTION = "collection"


@dataclass(frozen=True)
class ItemDescriptor:
    """Minimal ``{id, type}`` reference to a normalized record."""

    id: Any
    type: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.type, str(self.id))

    def __str__(self) -> str:
        return f"{self.type}.{self.id}"

    def as_reference(self) -> Dict[str, Any]:
        return {"id": self.id, "type": self.type}

    @classmethod
    def from_reference(cls, reference: Any) -> "ItemDescriptor":
        if isinstance(reference, ItemDescriptor):
            return reference
        if not isinstance(reference, Mapping):
            raise TypeError(
                f"Expected an item reference with 'id' and 'type', got {type(reference).__name__}"
            )
        return cls(id=reference["id"], type=reference["type"])
