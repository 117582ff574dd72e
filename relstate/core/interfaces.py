from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional

from relstate.core.classes import (CacheEntry, Resolution, ResolutionContext,
                                   Sources, SourceStamp)
from relstate.core.types import CacheEntryKind, CacheKey, ItemDescriptor

NestedResolver = Callable[[ItemDescriptor], Resolution]
NormalizedItemLookup = Callable[[ItemDescriptor], Any]


class AbstractResolver(ABC):
    """
    Resolves one descriptor into its nested form by following relationships.
    Nested descriptors are handed back through ``resolve_nested`` so the
    caller can decide how each of them is served.
    """

    @abstractmethod
    def resolve(
        self,
        descriptor: ItemDescriptor,
        context: ResolutionContext,
        resolve_nested: NestedResolver,
    ) -> Resolution:
        """
        Resolve ``descriptor`` against ``context.schema_map``.

        Returns a CYCLIC resolution when the descriptor is an ancestor on
        ``context.path`` and a TOO_DEEP resolution when its depth exceeds
        ``context.max_depth``. Any other failure is raised.
        """
        pass

    @abstractmethod
    def merge_item_data(
        self,
        normalized_item: Mapping[str, Any],
        item_data: Dict[str, Any],
        relationships_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Combine item attributes and resolved relationships into one object."""
        pass

    @abstractmethod
    def set_depth_limit(self, max_depth: Optional[int]) -> None:
        """Default depth bound used by standalone resolution."""
        pass


class AbstractValidityCache(ABC):
    """
    Stores denormalized values together with what is needed to check them
    against the current normalized source.
    """

    @abstractmethod
    def get(self, descriptor: Any, max_depth: Any = ...) -> Any:
        """Cached value usable at ``max_depth``, without a freshness check."""
        pass

    @abstractmethod
    def is_checked(self, descriptor: Any, max_depth: Any = ...) -> bool:
        """True if a current freshness verdict exists for the entry."""
        pass

    @abstractmethod
    def get_valid_item(
        self, descriptor: ItemDescriptor, max_depth: Any, get_normalized_item: NormalizedItemLookup
    ) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def get_valid_one(
        self, reference: Mapping[str, Any], max_depth: Any, get_normalized_item: NormalizedItemLookup
    ) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def get_valid_collection(
        self, collection: Any, max_depth: Any, get_normalized_item: NormalizedItemLookup
    ) -> Optional[CacheEntry]:
        pass

    @abstractmethod
    def add(
        self,
        value: Any,
        max_depth: Any = ...,
        *,
        sources: Optional[Sources] = None,
        depth: int = 0,
        key: Optional[CacheKey] = None,
        origin: Optional[SourceStamp] = None,
        kind: Optional[CacheEntryKind] = None,
    ) -> Any:
        """Store ``value`` and return it."""
        pass

    @abstractmethod
    def set_default_max_depth(self, max_depth: Optional[int]) -> None:
        pass

    @abstractmethod
    def flush(self) -> None:
        """Drop every entry and all freshness bookkeeping."""
        pass

    @abstractmethod
    def flush_modification_cache(self) -> None:
        """Drop all freshness verdicts; cached values are kept."""
        pass

    @abstractmethod
    def invalidate_modification_cache(self) -> None:
        """Make all freshness verdicts non-current; cached values are kept."""
        pass
