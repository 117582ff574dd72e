from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from relstate.core.exceptions import (CircularDenormalizationError,
                                      TooDeepDenormalizationError,
                                      UnknownSchemaError)
from relstate.core.status import get_modified_timestamp
from relstate.core.types import (CacheEntryKind, CacheKey, ItemDescriptor,
                                 ResolutionKind, SchemaMap)


@dataclass(frozen=True)
class SourceStamp:
    """
    Identity of a normalized object at the time a value was built from it.

    A stamp with ``ref=None`` records that the object was absent.
    """

    ref: Any
    modified_timestamp: Optional[float] = None

    @classmethod
    def of(cls, obj: Any) -> "SourceStamp":
        return cls(ref=obj, modified_timestamp=get_modified_timestamp(obj))

    def is_fresh(self, current: Any) -> bool:
        return current is self.ref and get_modified_timestamp(current) == self.modified_timestamp


Sources = Dict[ItemDescriptor, SourceStamp]


@dataclass
class CacheEntry:
    key: CacheKey
    kind: CacheEntryKind
    value: Any
    max_depth: Optional[int]  # bound the value was produced under, None is unlimited
    depth: int = 0  # resolved nesting depth actually present in the value
    sources: Sources = field(default_factory=dict)
    origin: Optional[SourceStamp] = None

    def covers(self, max_depth: Optional[int]) -> bool:
        if max_depth is None:
            return self.max_depth is None
        if self.max_depth is not None and self.max_depth < max_depth:
            return False
        return self.depth <= max_depth


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one descriptor."""

    kind: ResolutionKind
    descriptor: ItemDescriptor
    value: Any
    depth: int = 0
    sources: Sources = field(default_factory=dict)

    @property
    def is_resolved(self) -> bool:
        return self.kind is ResolutionKind.RESOLVED

    @classmethod
    def resolved(cls, descriptor: ItemDescriptor, value: Any, depth: int = 0,
                 sources: Optional[Sources] = None) -> "Resolution":
        return cls(ResolutionKind.RESOLVED, descriptor, value, depth, dict(sources or {}))

    @classmethod
    def missing(cls, descriptor: ItemDescriptor) -> "Resolution":
        return cls(
            ResolutionKind.MISSING,
            descriptor,
            descriptor.as_reference(),
            sources={descriptor: SourceStamp(ref=None)},
        )

    @classmethod
    def cyclic(cls, descriptor: ItemDescriptor) -> "Resolution":
        return cls(ResolutionKind.CYCLIC, descriptor, descriptor.as_reference())

    @classmethod
    def too_deep(cls, descriptor: ItemDescriptor) -> "Resolution":
        return cls(ResolutionKind.TOO_DEEP, descriptor, descriptor.as_reference())

    @classmethod
    def from_cache(cls, descriptor: ItemDescriptor, entry: CacheEntry) -> "Resolution":
        return cls(ResolutionKind.RESOLVED, descriptor, entry.value, entry.depth, dict(entry.sources))

    def unwrap(self) -> Any:
        """Return the value, raising for the cycle and depth signals."""
        if self.kind is ResolutionKind.CYCLIC:
            raise CircularDenormalizationError(
                f"Circular relationship while resolving {self.descriptor}"
            )
        if self.kind is ResolutionKind.TOO_DEEP:
            raise TooDeepDenormalizationError(
                f"Nesting depth limit exceeded at {self.descriptor}"
            )
        return self.value


def lookup_normalized_item(schema_map: SchemaMap, descriptor: ItemDescriptor) -> Any:
    """
    Find the normalized record for ``descriptor``; None when it is absent.

    Raises:
        UnknownSchemaError: If the descriptor type is not a schema of the map
    """
    if descriptor.type not in schema_map:
        raise UnknownSchemaError(
            f"Schema '{descriptor.type}' of {descriptor} is not in the schema map"
        )
    records = schema_map[descriptor.type]
    if not records:
        return None
    record = records.get(descriptor.id)
    if record is None and not isinstance(descriptor.id, str):
        record = records.get(str(descriptor.id))
    return record


@dataclass
class ResolutionContext:
    """
    State of one top-level denormalization call.

    Created when the call starts and passed through every recursive frame,
    so nothing here survives into the next call.
    """

    schema_map: SchemaMap
    max_depth: Optional[int]
    path: List[CacheKey] = field(default_factory=list)
    loop_items: Set[CacheKey] = field(default_factory=set)
    incomplete: bool = False
    pending_writes: List[Callable[[], Any]] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def remaining_depth(self) -> Optional[int]:
        if self.max_depth is None:
            return None
        return self.max_depth - self.depth

    @property
    def cache_eligible(self) -> bool:
        return not self.incomplete and not self.loop_items

    def get_normalized_item(self, descriptor: ItemDescriptor) -> Any:
        return lookup_normalized_item(self.schema_map, descriptor)

    def is_ancestor(self, key: CacheKey) -> bool:
        return key in self.path

    def defer(self, write: Callable[[], Any]) -> None:
        self.pending_writes.append(write)

    def commit(self) -> int:
        """Run deferred cache writes unless a depth limit was hit; returns the count."""
        writes, self.pending_writes = self.pending_writes, []
        if self.incomplete:
            return 0
        for write in writes:
            write()
        return len(writes)
