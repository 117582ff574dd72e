import logging
from typing import Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from relstate.core.config import AppConfig, Registry

logger = logging.getLogger(__name__)


class DjangoLocalConfig(AppConfig):
    def __init__(self):
        super().__init__()
        self.enable_telemetry = getattr(settings, "RELSTATE_ENABLE_TELEMETRY", False)
        self.cache_child_objects = getattr(settings, "RELSTATE_CACHE_CHILD_OBJECTS", False)
        self.store_path = getattr(settings, "RELSTATE_STORE", None)
        self.schema_paths = getattr(settings, "RELSTATE_SCHEMA_PATHS", {})
        self.configure(
            nesting_depth_limit=getattr(settings, "RELSTATE_NESTING_DEPTH_LIMIT", None)
        )

    def get_store_accessor(self):
        """Import the zero-argument store accessor named by RELSTATE_STORE."""
        if not self.store_path:
            return None
        accessor = import_string(self.store_path)
        if not callable(accessor):
            raise ImproperlyConfigured(
                f"RELSTATE_STORE must point to a callable, got {self.store_path}"
            )
        return accessor

    def initialize(self, schema_registry: Optional[Registry] = None):
        schema_registry = schema_registry or registry
        for schema, path in self.schema_paths.items():
            try:
                schema_registry.get_config(schema)
            except ValueError:
                schema_registry.register(schema, path)

        get_store = self.get_store_accessor()
        if get_store is None:
            logger.info("RELSTATE_STORE is not set, denormalizer runs in provide-storage mode")
        elif not schema_registry.schema_paths():
            logger.warning(
                "RELSTATE_STORE is set but no schemas are registered. Add RELSTATE_SCHEMA_PATHS "
                "to your settings.py so relationships can be found in the store"
            )
        self.denormalizer = self.create_denormalizer(schema_registry, get_store)
        logger.debug(f"Denormalizer initialized in {self.denormalizer.mode.value} mode")


# Create the singleton instances.
custom_config_path = getattr(settings, "RELSTATE_CUSTOM_CONFIG", None)
if custom_config_path:
    custom_config_class = import_string(custom_config_path)
    if not issubclass(custom_config_class, AppConfig):
        raise ImproperlyConfigured(
            "RELSTATE_CUSTOM_CONFIG must be a subclass of AppConfig"
        )
    config = custom_config_class()
else:
    config = DjangoLocalConfig()

registry = Registry()
