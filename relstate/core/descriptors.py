"""
Builders for ``{id, type}`` descriptors.

The type of a descriptor is read from status metadata when the input carries
it, and from an explicit schema argument otherwise.
"""
from typing import Any, List, Mapping, Optional, Union

from relstate.core.exceptions import MissingSchemaError
from relstate.core.status import (Collection, clone_status, get_status,
                                  get_status_schema)
from relstate.core.types import ItemDescriptor

ONE_VALUE_KEY = "value"


def is_structured_one(value: Any) -> bool:
    """A single reference that carries its own status and an inner id."""
    return (
        isinstance(value, Mapping)
        and ONE_VALUE_KEY in value
        and get_status(value) is not None
    )


def _is_reference(value: Any) -> bool:
    return isinstance(value, ItemDescriptor) or (
        isinstance(value, Mapping) and "id" in value and "type" in value
    )


def descriptor_for_one(value: Any, schema: Optional[str] = None) -> ItemDescriptor:
    if is_structured_one(value):
        # The reference describes its own type, the argument is only a fallback.
        resolved_schema = get_status_schema(value) or schema
        if not resolved_schema:
            raise MissingSchemaError("Single reference status has no schema")
        return ItemDescriptor(id=value[ONE_VALUE_KEY], type=resolved_schema)
    if _is_reference(value):
        return ItemDescriptor.from_reference(value)
    if not schema:
        raise MissingSchemaError(
            f"Schema is required to create a descriptor for id {value!r}"
        )
    return ItemDescriptor(id=value, type=schema)


def descriptor_for_collection(
    collection: Any, schema: Optional[str] = None
) -> Union[Collection, List[ItemDescriptor]]:
    """
    Create one descriptor per element of ``collection``.

    Elements are primitive ids or item references. The status of the input
    collection, if any, is cloned onto the returned sequence as a whole.
    """
    resolved_schema = get_status_schema(collection) or schema
    if not resolved_schema:
        raise MissingSchemaError(
            "Collection has no status schema and no schema argument was given"
        )

    descriptors = [
        ItemDescriptor.from_reference(element)
        if _is_reference(element)
        else ItemDescriptor(id=element, type=resolved_schema)
        for element in collection
    ]

    if get_status(collection) is None:
        return descriptors
    return clone_status(collection, Collection(descriptors))
