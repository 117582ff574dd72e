"""
Status metadata attached to normalized items, single references and collections.

Mappings carry their status under ``STATUS_KEY``. Lists can not hold extra
attributes, so collections that carry status are ``Collection`` instances.
A status is always copied when it moves from one object to another.
"""
import time
from typing import Any, Iterable, Mapping, MutableMapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

STATUS_KEY = "_status"

ONE_TYPE = "one"
COLLECTION_TYPE = "collection"


def _new_status_id() -> str:
    return str(uuid4())


class Status(BaseModel):
    """Opaque annotation; unknown fields are preserved as extras."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    # Set by create_status and update_status; a status read from plain data
    # carries neither until it is updated.
    id: Optional[str] = None
    schema_name: Optional[str] = Field(default=None, alias="schema")
    type: Optional[str] = None
    modified_timestamp: Optional[float] = None
    busy: bool = False
    error: bool = False


class Collection(list):
    """A list of ids or denormalized items that can carry status."""

    def __init__(self, iterable: Iterable[Any] = (), status: Union[Status, Mapping[str, Any], None] = None):
        super().__init__(iterable)
        self.status = _coerce(status)


def _coerce(status: Union[Status, Mapping[str, Any], None]) -> Optional[Status]:
    if status is None or isinstance(status, Status):
        return status
    return Status.model_validate(status)


def create_status(schema: Optional[str] = None, type: Optional[str] = None, **extra) -> Status:
    return Status(
        id=_new_status_id(), schema=schema, type=type, modified_timestamp=time.time(), **extra
    )


def get_status(obj: Any) -> Optional[Status]:
    if isinstance(obj, Mapping):
        # Plain dict statuses are coerced on every read and never written back.
        return _coerce(obj.get(STATUS_KEY))
    return getattr(obj, "status", None) if isinstance(obj, Collection) else None


def set_status(obj: Any, status: Union[Status, Mapping[str, Any], None]) -> Any:
    status = _coerce(status)
    if isinstance(obj, MutableMapping):
        if status is None:
            obj.pop(STATUS_KEY, None)
        else:
            obj[STATUS_KEY] = status
    elif isinstance(obj, Collection):
        obj.status = status
    else:
        raise TypeError(f"Can not attach status to {type(obj).__name__}")
    return obj


def clone_status(source: Any, target: Any) -> Any:
    """Copy the status of ``source`` onto ``target`` as an independent copy."""
    status = get_status(source)
    return set_status(target, status.model_copy(deep=True) if status is not None else None)


# Used when merging a normalized item into its denormalized form.
apply_status = clone_status


def get_status_schema(obj: Any) -> Optional[str]:
    status = get_status(obj)
    return status.schema_name if status is not None else None


def get_modified_timestamp(obj: Any) -> Optional[float]:
    status = get_status(obj)
    return status.modified_timestamp if status is not None else None


def update_status(obj: Any, **changes) -> Status:
    """
    Apply ``changes`` to the status of ``obj`` and mark it modified.

    The new timestamp is always strictly greater than the previous one so
    that cached values built from ``obj`` are recognised as stale.
    """
    if "schema" in changes:
        changes["schema_name"] = changes.pop("schema")
    status = get_status(obj) or Status()
    previous = status.modified_timestamp or 0.0
    updated = status.model_copy(update=changes)
    updated.id = updated.id or _new_status_id()
    updated.modified_timestamp = max(time.time(), previous + 1e-6)
    set_status(obj, updated)
    return updated
