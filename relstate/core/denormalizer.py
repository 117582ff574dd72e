"""
Denormalization with a validity-checked cache.

``Denormalizer`` wraps a resolver with cache consultation, recovery from
relationship cycles and depth limits, status propagation, and the policy
that decides which results may be cached.
"""
import logging
from functools import partial
from typing import Any, List, Mapping, Optional, Union

from relstate.core.cache import (ValidityCache, format_cache_key,
                                 status_cache_key)
from relstate.core.classes import (CacheEntry, Resolution, ResolutionContext,
                                   SourceStamp)
from relstate.core.descriptors import (descriptor_for_collection,
                                       descriptor_for_one, is_structured_one)
from relstate.core.exceptions import ConfigError
from relstate.core.interfaces import AbstractResolver, AbstractValidityCache
from relstate.core.resolver import ObjectResolver, merge_item_data
from relstate.core.schema_map import SchemaMapResolver
from relstate.core.status import (Collection, apply_status, clone_status,
                                  get_status)
from relstate.core.telemetry import get_telemetry_context
from relstate.core.types import (CacheEntryKind, CacheKey, ItemDescriptor,
                                 ResolutionKind, SchemaMap, SchemaPaths,
                                 StorageMode, StoreAccessor)

logger = logging.getLogger(__name__)

_DEFAULT = ...


def merge_item_with_status(normalized_item, item_data, relationships_data):
    """Merge item data and carry the normalized item's status over to the result."""
    merged = merge_item_data(normalized_item, item_data, relationships_data)
    apply_status(normalized_item, merged)
    return merged


def validate_depth_limit(max_depth: Any) -> Optional[int]:
    if max_depth is None:
        return None
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 0:
        raise ValueError(f"Nesting depth limit must be a non-negative integer or None, got {max_depth!r}")
    return max_depth


class Denormalizer:
    """
    Returns normalized records in denormalized form.

    Two storage modes are supported, fixed for the lifetime of the instance:

    find storage
        ``get_store`` and ``store_schema_paths`` are given. The schema map is
        built from the latest store on every call.
    provide storage
        Neither is given and every call must pass a ``schema_map``.

    Only the item requested by the caller is cached by default; its nested
    items are part of its cached graph already. Set ``cache_child_objects``
    to cache every resolved item.
    """

    def __init__(
        self,
        get_store: Optional[StoreAccessor] = None,
        store_schema_paths: Optional[SchemaPaths] = None,
        *,
        resolver: Optional[AbstractResolver] = None,
        cache: Optional[AbstractValidityCache] = None,
        max_depth: Optional[int] = None,
        cache_child_objects: bool = False,
    ):
        if get_store is not None and store_schema_paths:
            self._mode = StorageMode.FIND_STORAGE
        else:
            if get_store is not None or store_schema_paths:
                logger.warning(
                    "Both get_store and store_schema_paths are required for find-storage mode; "
                    "falling back to provide-storage mode"
                )
            self._mode = StorageMode.PROVIDE_STORAGE

        self._get_store = get_store
        self._store_schema_paths = store_schema_paths
        self._schema_map_resolver = SchemaMapResolver()

        self.resolver: AbstractResolver = resolver or ObjectResolver(merge=merge_item_with_status)
        self.cache: AbstractValidityCache = cache or ValidityCache()
        self.cache_child_objects = cache_child_objects
        self.max_depth: Optional[int] = None
        self.set_nesting_depth_limit(max_depth)

    @property
    def mode(self) -> StorageMode:
        return self._mode

    # === Configuration ===

    def set_nesting_depth_limit(self, max_depth: Optional[int]) -> None:
        self.max_depth = validate_depth_limit(max_depth)
        self.resolver.set_depth_limit(self.max_depth)
        self.cache.set_default_max_depth(self.max_depth)

    def flush_cache(self) -> None:
        self.cache.flush()

    def flush_modification_cache(self) -> None:
        self.cache.flush_modification_cache()

    def invalidate_modification_cache(self) -> None:
        self.cache.invalidate_modification_cache()

    # === Public API ===

    def denormalize_item(
        self,
        descriptor: Union[ItemDescriptor, Mapping[str, Any]],
        schema_map: Optional[SchemaMap] = None,
        max_depth: Any = _DEFAULT,
    ) -> Any:
        """
        Denormalize one item.

        Returns the nested item, or the bare ``{id, type}`` reference when the
        record is missing. Positions where a cycle closes or the depth limit is
        reached hold bare references as well.
        """
        descriptor = ItemDescriptor.from_reference(descriptor)
        context = self._begin(schema_map, max_depth)
        resolution = self._denormalize_item(descriptor, context, is_root=True)
        self._finish(context)
        return resolution.value

    def denormalize_one(
        self,
        reference: Any,
        schema_map: Optional[SchemaMap] = None,
        schema: Optional[str] = None,
        max_depth: Any = _DEFAULT,
    ) -> Any:
        """
        Denormalize a single reference.

        A structured reference (``{"value": id, "_status": ...}``) keeps its
        own status on the result, since that status describes the reference
        slot rather than the item. A primitive id needs ``schema``.
        """
        if reference is None:
            return None

        descriptor = descriptor_for_one(reference, schema)
        if not is_structured_one(reference):
            return self.denormalize_item(descriptor, schema_map, max_depth)

        context = self._begin(schema_map, max_depth)
        entry = self._get_cached(
            self.cache.get_valid_one, reference, context, status_cache_key(CacheEntryKind.ONE, reference)
        )
        if entry is not None:
            return entry.value

        resolution = self._denormalize_item(descriptor, context, is_root=True)
        one = dict(resolution.value)
        clone_status(reference, one)

        if resolution.is_resolved and context.cache_eligible:
            context.defer(partial(
                self.cache.add,
                one,
                context.max_depth,
                sources=resolution.sources,
                depth=resolution.depth,
                key=status_cache_key(CacheEntryKind.ONE, reference),
                origin=SourceStamp.of(reference),
                kind=CacheEntryKind.ONE,
            ))
        self._finish(context)
        return one

    def denormalize_collection(
        self,
        collection: Any,
        schema_map: Optional[SchemaMap] = None,
        schema: Optional[str] = None,
        max_depth: Any = _DEFAULT,
    ) -> Optional[List[Any]]:
        """
        Denormalize a collection of ids, preserving order.

        Raises:
            MissingSchemaError: If the collection has no status schema and no
                ``schema`` is given
        """
        if collection is None:
            return None

        descriptors = descriptor_for_collection(collection, schema)
        context = self._begin(schema_map, max_depth)
        has_status = get_status(collection) is not None

        if has_status:
            entry = self._get_cached(
                self.cache.get_valid_collection,
                collection,
                context,
                status_cache_key(CacheEntryKind.COLLECTION, collection),
            )
            if entry is not None:
                return entry.value

        # Every element is requested directly by the caller, so each one is
        # handled as a root item.
        resolutions = [
            self._denormalize_item(descriptor, context, is_root=True)
            for descriptor in descriptors
        ]
        values = [resolution.value for resolution in resolutions]

        if not has_status:
            self._finish(context)
            return values

        denormalized = clone_status(collection, Collection(values))
        if context.cache_eligible:
            sources = {}
            for resolution in resolutions:
                sources.update(resolution.sources)
            context.defer(partial(
                self.cache.add,
                denormalized,
                context.max_depth,
                sources=sources,
                depth=max((r.depth for r in resolutions if r.is_resolved), default=0),
                key=status_cache_key(CacheEntryKind.COLLECTION, collection),
                origin=SourceStamp.of(collection),
                kind=CacheEntryKind.COLLECTION,
            ))
        self._finish(context)
        return denormalized

    # === Resolution ===

    def _schema_map_for_call(self, schema_map: Optional[SchemaMap]) -> SchemaMap:
        if schema_map is not None:
            return schema_map
        if self._mode is StorageMode.FIND_STORAGE:
            return self._schema_map_resolver.resolve(self._get_store(), self._store_schema_paths)
        raise ConfigError(
            "Denormalizer is in provide-storage mode, a schema_map must be passed to every call"
        )

    def _begin(self, schema_map: Optional[SchemaMap], max_depth: Any) -> ResolutionContext:
        max_depth = self.max_depth if max_depth is _DEFAULT else validate_depth_limit(max_depth)
        context = ResolutionContext(
            schema_map=self._schema_map_for_call(schema_map),
            max_depth=max_depth,
        )
        # Storage may have changed since the previous call.
        self.cache.invalidate_modification_cache()
        return context

    def _finish(self, context: ResolutionContext) -> None:
        pending = len(context.pending_writes)
        committed = context.commit()
        if pending and not committed:
            logger.debug(f"Discarded {pending} cache write(s), depth limit {context.max_depth} was reached")
        telemetry = get_telemetry_context()
        if telemetry:
            telemetry.record_event(
                "denormalize",
                "Top-level denormalization finished",
                {"committed": committed, "discarded": pending - committed},
            )

    def _get_cached(self, lookup, obj: Any, context: ResolutionContext, key: CacheKey) -> Optional[CacheEntry]:
        entry = lookup(obj, context.remaining_depth, context.get_normalized_item)
        key = format_cache_key(key)
        telemetry = get_telemetry_context()
        if entry is None:
            logger.debug(f"Denormalization cache MISS for {key}")
            if telemetry:
                telemetry.record_cache_miss(key, f"depth={context.remaining_depth}")
        else:
            logger.debug(f"Denormalization cache HIT for {key}")
            if telemetry:
                telemetry.record_cache_hit(key, f"depth={context.remaining_depth}")
        return entry

    def _denormalize_item(
        self, descriptor: ItemDescriptor, context: ResolutionContext, is_root: bool
    ) -> Resolution:
        key = descriptor.key
        use_cache = is_root or self.cache_child_objects

        if use_cache:
            entry = self._get_cached(self.cache.get_valid_item, descriptor, context, key)
            # A nested entry built through one of the current ancestors would
            # not be cut at the same place as a fresh resolution.
            if entry is not None and (
                is_root or not any(context.is_ancestor(source.key) for source in entry.sources)
            ):
                return Resolution.from_cache(descriptor, entry)

        resolution = self.resolver.resolve(
            descriptor,
            context,
            partial(self._denormalize_nested, context=context),
        )
        telemetry = get_telemetry_context()
        if telemetry:
            telemetry.record_resolution(resolution.kind.value)

        if resolution.kind is ResolutionKind.CYCLIC:
            context.loop_items.add(key)
            return resolution
        if resolution.kind is ResolutionKind.TOO_DEEP:
            context.incomplete = True
            return resolution

        # Evaluated before this item leaves the loop set: an item whose own
        # subtree closed a cycle back onto it is not cached.
        cacheable = use_cache and resolution.is_resolved and not context.loop_items
        context.loop_items.discard(key)
        if cacheable:
            context.defer(partial(
                self.cache.add,
                resolution.value,
                context.remaining_depth,
                sources=resolution.sources,
                depth=resolution.depth,
                key=key,
                kind=CacheEntryKind.ITEM,
            ))
        return resolution

    def _denormalize_nested(self, descriptor: ItemDescriptor, context: ResolutionContext) -> Resolution:
        return self._denormalize_item(descriptor, context, is_root=False)
