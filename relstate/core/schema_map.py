"""
Builds the schema map used to resolve relationships from a storage snapshot.
"""
import logging
from typing import Any, Optional, Sequence, Tuple

from cytoolz import get_in

from relstate.core.types import SchemaMap, SchemaPath, SchemaPaths

logger = logging.getLogger(__name__)


def _path_keys(path: SchemaPath) -> Sequence[Any]:
    """
    Split a dotted path into lookup keys.

    Examples:
        "entities.users" -> ["entities", "users"]
        ["entities", 0]  -> ["entities", 0]
    """
    if isinstance(path, str):
        return [int(part) if part.isdigit() else part for part in path.split(".")]
    return list(path)


def create_schemas_map(store: Any, schema_paths: SchemaPaths) -> SchemaMap:
    """Look up every schema path inside ``store``; missing paths map to None."""
    return {
        schema: get_in(_path_keys(path), store)
        for schema, path in schema_paths.items()
    }


class SchemaMapResolver:
    """
    Single-slot memo around ``create_schemas_map``.

    Only the most recent ``(store, schema_paths)`` pair is remembered, and it is
    compared by identity, so an unchanged snapshot is mapped once.
    """

    def __init__(self) -> None:
        self._memo_inputs: Optional[Tuple[Any, SchemaPaths]] = None
        self._memo_value: Optional[SchemaMap] = None

    def resolve(self, store: Any, schema_paths: SchemaPaths) -> SchemaMap:
        if self._memo_inputs is not None:
            last_store, last_paths = self._memo_inputs
            if last_store is store and last_paths is schema_paths:
                return self._memo_value

        logger.debug(f"Building schema map for {len(schema_paths)} schemas")
        schema_map = create_schemas_map(store, schema_paths)
        self._memo_inputs = (store, schema_paths)
        self._memo_value = schema_map
        return schema_map

    def invalidate(self) -> None:
        self._memo_inputs = None
        self._memo_value = None
