"""
Validity-checked cache of denormalized values.

An entry is served only when

1. it was produced under a depth bound at least as large as the requested
   one and the nesting actually present in it fits the requested bound, and
2. every normalized object it was built from is still the same object with
   the same modification timestamp (the freshness check).

Freshness verdicts are remembered in the modification cache, so an entry
is "checked" at most once until the modification cache is invalidated.
"""
import logging
from typing import Any, Dict, Mapping, Optional

from relstate.core.classes import CacheEntry, Sources, SourceStamp
from relstate.core.interfaces import AbstractValidityCache, NormalizedItemLookup
from relstate.core.status import ONE_TYPE, get_status
from relstate.core.types import CacheEntryKind, CacheKey, ItemDescriptor

logger = logging.getLogger(__name__)

_DEFAULT = ...


def item_cache_key(descriptor: Any) -> CacheKey:
    return ItemDescriptor.from_reference(descriptor).key


def status_cache_key(kind: CacheEntryKind, obj: Any) -> Optional[CacheKey]:
    """
    Key of a single reference or collection.

    Derived from the status id, or from the identity of ``obj`` when its status
    was read from plain data and has no id. The origin stamp of the entry
    still has to match, so a reused identity is never served.
    """
    status = get_status(obj)
    if status is None:
        return None
    return (kind, status.id if status.id is not None else id(obj))


def format_cache_key(key: CacheKey) -> str:
    """Readable form of a cache key for logs and telemetry."""
    if isinstance(key, tuple) and isinstance(key[0], CacheEntryKind):
        return f"{key[0].value}:{key[1]}"
    if isinstance(key, tuple):
        return ".".join(str(part) for part in key)
    return str(key)


class ValidityCache(AbstractValidityCache):
    def __init__(self, default_max_depth: Optional[int] = None) -> None:
        self.default_max_depth = default_max_depth
        self._entries: Dict[CacheKey, CacheEntry] = {}
        # entry key -> (generation, verdict)
        self._modification_cache: Dict[CacheKey, tuple] = {}
        self._generation = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Any) -> bool:
        return self._key(key) in self._entries

    def _key(self, key_or_descriptor: Any) -> CacheKey:
        if isinstance(key_or_descriptor, tuple):
            return key_or_descriptor
        return item_cache_key(key_or_descriptor)

    def _depth(self, max_depth: Any) -> Optional[int]:
        return self.default_max_depth if max_depth is _DEFAULT else max_depth

    def set_default_max_depth(self, max_depth: Optional[int]) -> None:
        self.default_max_depth = max_depth

    # === Lookup ===

    def get_entry(self, key_or_descriptor: Any, max_depth: Any = _DEFAULT) -> Optional[CacheEntry]:
        entry = self._entries.get(self._key(key_or_descriptor))
        if entry is None or not entry.covers(self._depth(max_depth)):
            return None
        return entry

    def get(self, descriptor: Any, max_depth: Any = _DEFAULT) -> Any:
        entry = self.get_entry(descriptor, max_depth)
        return entry.value if entry is not None else None

    def is_checked(self, descriptor: Any, max_depth: Any = _DEFAULT) -> bool:
        entry = self.get_entry(descriptor, max_depth)
        if entry is None:
            return False
        checked = self._modification_cache.get(entry.key)
        return checked is not None and checked[0] == self._generation

    def get_valid_item(
        self,
        descriptor: ItemDescriptor,
        max_depth: Any,
        get_normalized_item: NormalizedItemLookup,
    ) -> Optional[CacheEntry]:
        return self._get_valid(item_cache_key(descriptor), max_depth, get_normalized_item)

    def get_valid_one(
        self,
        reference: Mapping[str, Any],
        max_depth: Any,
        get_normalized_item: NormalizedItemLookup,
    ) -> Optional[CacheEntry]:
        key = status_cache_key(CacheEntryKind.ONE, reference)
        if key is None:
            return None
        return self._get_valid(key, max_depth, get_normalized_item, origin=reference)

    def get_valid_collection(
        self,
        collection: Any,
        max_depth: Any,
        get_normalized_item: NormalizedItemLookup,
    ) -> Optional[CacheEntry]:
        key = status_cache_key(CacheEntryKind.COLLECTION, collection)
        if key is None:
            return None
        return self._get_valid(key, max_depth, get_normalized_item, origin=collection)

    def _get_valid(
        self,
        key: CacheKey,
        max_depth: Any,
        get_normalized_item: NormalizedItemLookup,
        origin: Any = None,
    ) -> Optional[CacheEntry]:
        entry = self.get_entry(key, max_depth)
        if entry is None:
            return None

        if self.is_checked(key, max_depth):
            valid = self._modification_cache[key][1]
        else:
            valid = self._is_fresh(entry, get_normalized_item, origin)
            self._modification_cache[key] = (self._generation, valid)

        if not valid:
            logger.debug(f"Cache entry {format_cache_key(key)} is stale")
            return None
        return entry

    def _is_fresh(self, entry: CacheEntry, get_normalized_item: NormalizedItemLookup, origin: Any) -> bool:
        if entry.origin is not None and not entry.origin.is_fresh(origin):
            return False
        return all(
            stamp.is_fresh(get_normalized_item(descriptor))
            for descriptor, stamp in entry.sources.items()
        )

    # === Storage ===

    def add(
        self,
        value: Any,
        max_depth: Any = _DEFAULT,
        *,
        sources: Optional[Sources] = None,
        depth: int = 0,
        key: Optional[CacheKey] = None,
        origin: Optional[SourceStamp] = None,
        kind: Optional[CacheEntryKind] = None,
    ) -> Any:
        """
        Store ``value`` and return it.

        Without an explicit ``key`` the key is taken from the value: single
        references and collections by their status id, items by ``type``/``id``.
        """
        kind = kind or self._kind_of(value)
        if key is None:
            key = status_cache_key(kind, value) if kind is not CacheEntryKind.ITEM else item_cache_key(value)
        self._entries[key] = CacheEntry(
            key=key,
            kind=kind,
            value=value,
            max_depth=self._depth(max_depth),
            depth=depth,
            sources=dict(sources or {}),
            origin=origin,
        )
        # A new value has not been checked against storage yet.
        self._modification_cache.pop(key, None)
        logger.debug(f"Cached {kind.value} {format_cache_key(key)} (depth {depth}, bound {self._depth(max_depth)})")
        return value

    def _kind_of(self, value: Any) -> CacheEntryKind:
        if isinstance(value, list):
            return CacheEntryKind.COLLECTION
        status = get_status(value)
        if status is not None and status.type == ONE_TYPE:
            return CacheEntryKind.ONE
        return CacheEntryKind.ITEM

    # === Flushing ===

    def flush(self) -> None:
        self._entries.clear()
        self._modification_cache.clear()

    def flush_modification_cache(self) -> None:
        self._modification_cache.clear()

    def invalidate_modification_cache(self) -> None:
        self._generation += 1
