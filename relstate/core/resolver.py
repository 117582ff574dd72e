"""
Recursive resolution of normalized JSON-API style records.

A normalized record looks like::

    {
        "id": "1",
        "type": "user",
        "attributes": {"name": "Ada"},
        "relationships": {
            "friend": {"data": {"id": "2", "type": "user"}},
            "posts": {"data": [{"id": "7", "type": "post"}]},
        },
    }

and is resolved into ``{"id", "type", **attributes, **relationships}`` with
every relationship reference replaced by its own resolved record.
"""
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from relstate.core.classes import (Resolution, ResolutionContext, Sources,
                                   SourceStamp)
from relstate.core.interfaces import AbstractResolver, NestedResolver
from relstate.core.types import ItemDescriptor, SchemaMap

logger = logging.getLogger(__name__)

MergeItemData = Callable[[Mapping[str, Any], Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


def merge_item_data(
    normalized_item: Mapping[str, Any],
    item_data: Dict[str, Any],
    relationships_data: Dict[str, Any],
) -> Dict[str, Any]:
    return {**item_data, **relationships_data}


class ObjectResolver(AbstractResolver):
    def __init__(self, max_depth: Optional[int] = None, merge: Optional[MergeItemData] = None):
        """
        :param max_depth: Depth bound for standalone ``denormalize`` calls.
        :param merge: Replaces ``merge_item_data`` when given; used to decorate
            merged items (for example with status metadata).
        """
        self.max_depth = max_depth
        self._merge = merge

    def set_depth_limit(self, max_depth: Optional[int]) -> None:
        self.max_depth = max_depth

    def merge_item_data(self, normalized_item, item_data, relationships_data):
        if self._merge is not None:
            return self._merge(normalized_item, item_data, relationships_data)
        return merge_item_data(normalized_item, item_data, relationships_data)

    def get_item_data(self, normalized_item: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "id": normalized_item.get("id"),
            "type": normalized_item.get("type"),
            **(normalized_item.get("attributes") or {}),
        }

    def resolve(
        self,
        descriptor: ItemDescriptor,
        context: ResolutionContext,
        resolve_nested: NestedResolver,
    ) -> Resolution:
        if context.is_ancestor(descriptor.key):
            logger.debug(f"Cycle closes at {descriptor} (path: {' > '.join('.'.join(key) for key in context.path)})")
            return Resolution.cyclic(descriptor)

        if context.max_depth is not None and context.depth > context.max_depth:
            logger.debug(f"Depth {context.depth} exceeds limit {context.max_depth} at {descriptor}")
            return Resolution.too_deep(descriptor)

        normalized_item = context.get_normalized_item(descriptor)
        if normalized_item is None:
            logger.debug(f"No normalized record for {descriptor}")
            return Resolution.missing(descriptor)

        context.path.append(descriptor.key)
        try:
            relationships_data, depth, sources = self.resolve_relationships(
                normalized_item, resolve_nested
            )
        finally:
            context.path.pop()

        sources[descriptor] = SourceStamp.of(normalized_item)
        item = self.merge_item_data(
            normalized_item, self.get_item_data(normalized_item), relationships_data
        )
        return Resolution.resolved(descriptor, item, depth, sources)

    def resolve_relationships(
        self, normalized_item: Mapping[str, Any], resolve_nested: NestedResolver
    ) -> Tuple[Dict[str, Any], int, Sources]:
        """
        Resolve every relationship of ``normalized_item``.

        Returns the relationship values, the nesting depth they add to the
        item, and the source stamps of every record they were built from.
        """
        relationships_data: Dict[str, Any] = {}
        depth = 0
        sources: Sources = {}

        def resolve_reference(reference: Any) -> Any:
            nonlocal depth
            resolution = resolve_nested(ItemDescriptor.from_reference(reference))
            sources.update(resolution.sources)
            if resolution.is_resolved:
                depth = max(depth, resolution.depth + 1)
            return resolution.value

        for name, relationship in (normalized_item.get("relationships") or {}).items():
            data = relationship.get("data") if isinstance(relationship, Mapping) else None
            if data is None:
                relationships_data[name] = None
            elif isinstance(data, list):
                relationships_data[name] = [resolve_reference(reference) for reference in data]
            else:
                relationships_data[name] = resolve_reference(data)

        return relationships_data, depth, sources

    def denormalize(
        self, descriptor: Any, schema_map: SchemaMap, max_depth: Any = ...
    ) -> Any:
        """
        Resolve ``descriptor`` without caching.

        Raises:
            CircularDenormalizationError: If a relationship cycle is reached
            TooDeepDenormalizationError: If the depth bound is exceeded
        """
        context = ResolutionContext(
            schema_map=schema_map,
            max_depth=self.max_depth if max_depth is ... else max_depth,
        )

        def resolve_nested(nested: ItemDescriptor) -> Resolution:
            return Resolution.resolved(nested, self.resolve(nested, context, resolve_nested).unwrap())

        return self.resolve(ItemDescriptor.from_reference(descriptor), context, resolve_nested).unwrap()
