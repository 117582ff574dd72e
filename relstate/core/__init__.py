"""
relstate: denormalization of relationship-based records with a validity-checked cache.
"""

from relstate.core.cache import ValidityCache
from relstate.core.config import AppConfig, Registry, SchemaConfig
from relstate.core.denormalizer import Denormalizer
from relstate.core.descriptors import (descriptor_for_collection,
                                       descriptor_for_one)
from relstate.core.exceptions import (CircularDenormalizationError,
                                      ConfigError, MissingSchemaError,
                                      RelStateError,
                                      TooDeepDenormalizationError,
                                      UnknownSchemaError)
from relstate.core.interfaces import AbstractResolver, AbstractValidityCache
from relstate.core.resolver import ObjectResolver
from relstate.core.schema_map import SchemaMapResolver, create_schemas_map
from relstate.core.status import (Collection, Status, clone_status,
                                  create_status, get_status, set_status,
                                  update_status)
from relstate.core.types import ItemDescriptor, ResolutionKind, StorageMode

__all__ = [
    # Types
    "ItemDescriptor",
    "ResolutionKind",
    "StorageMode",
    "Status",
    "Collection",
    # Configuration
    "AppConfig",
    "Registry",
    "SchemaConfig",
    # Denormalization
    "Denormalizer",
    "ObjectResolver",
    "ValidityCache",
    "SchemaMapResolver",
    "create_schemas_map",
    "descriptor_for_collection",
    "descriptor_for_one",
    # Status
    "create_status",
    "get_status",
    "set_status",
    "clone_status",
    "update_status",
    # Abstract Base Classes
    "AbstractResolver",
    "AbstractValidityCache",
    # Errors
    "RelStateError",
    "MissingSchemaError",
    "UnknownSchemaError",
    "CircularDenormalizationError",
    "TooDeepDenormalizationError",
    "ConfigError",
]

__version__ = "0.1.0"
