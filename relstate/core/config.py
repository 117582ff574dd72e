from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from relstate.core.denormalizer import Denormalizer, validate_depth_limit
from relstate.core.schema_graph import validate_schema_map
from relstate.core.schema_map import create_schemas_map
from relstate.core.telemetry import TelemetryContext, create_telemetry_context
from relstate.core.types import SchemaPath, SchemaPaths, StoreAccessor


class AppConfig(ABC):
    """
    Global configuration for the system.
    Developers configure:
      - The default nesting depth limit (None is unlimited)
      - Whether nested items are cached next to the requested item
      - Telemetry collection

    Storage locations of schemas are kept in a ``Registry``.
    """

    nesting_depth_limit: Optional[int] = None
    cache_child_objects: bool = False

    # Telemetry for debugging
    enable_telemetry: bool = False

    def __init__(self) -> None:
        self.denormalizer: Optional[Denormalizer] = None

    def configure(self, **kwargs) -> None:
        for key, value in kwargs.items():
            if hasattr(self, key):
                setattr(self, key, value)
            else:
                raise AttributeError(f"Invalid configuration key: {key}")
        validate_depth_limit(self.nesting_depth_limit)

    @abstractmethod
    def initialize(self) -> None:
        """
        Initialize the global configuration for the system.

        Subclasses read their settings source and create the denormalizer
        used by the application, usually through ``create_denormalizer``.

        Raises:
            NotImplementedError: If the method is not implemented in a subclass.
        """
        pass

    def create_denormalizer(
        self, registry: Registry, get_store: Optional[StoreAccessor] = None
    ) -> Denormalizer:
        """
        Build a denormalizer from this configuration.

        With a ``get_store`` accessor and registered schemas the denormalizer
        finds its storage itself; otherwise callers provide a schema map.
        """
        schema_paths = registry.schema_paths() if get_store is not None else None
        return Denormalizer(
            get_store,
            schema_paths,
            max_depth=self.nesting_depth_limit,
            cache_child_objects=self.cache_child_objects,
        )

    def validate_storage(self, registry: Registry, store: Any) -> bool:
        """
        Validate that every relationship found in ``store`` points at a
        registered schema.

        Raises:
            ConfigError: If a record references an unregistered schema
        """
        return validate_schema_map(create_schemas_map(store, registry.schema_paths()))

    def start_telemetry(self) -> TelemetryContext:
        """Activate a telemetry context for the current unit of work."""
        return create_telemetry_context(enabled=self.enable_telemetry)


class SchemaConfig:
    """
    Storage location of one schema.

    Parameters:
    -----------
    schema: str
        The schema name used as descriptor ``type``
    path: SchemaPath
        Dotted path (or key sequence) of the schema's records inside the store
    """

    def __init__(self, schema: str, path: SchemaPath):
        self.schema = schema
        self.path = path


class Registry:
    """
    Registry mapping schema names to their SchemaConfig.
    """

    def __init__(self) -> None:
        self._schemas_config: Dict[str, SchemaConfig] = {}

    def register(self, schema: str, path: SchemaPath) -> SchemaConfig:
        if schema in self._schemas_config:
            raise ValueError(f"Schema {schema} is already registered.")
        config = SchemaConfig(schema, path)
        self._schemas_config[schema] = config
        return config

    def get_config(self, schema: str) -> SchemaConfig:
        config = self._schemas_config.get(schema)
        if not config:
            raise ValueError(f"Schema {schema} is not registered.")
        return config

    def schema_paths(self) -> SchemaPaths:
        return {schema: config.path for schema, config in self._schemas_config.items()}
