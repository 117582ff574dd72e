import logging

from django.apps import AppConfig as DjangoAppConfig

from relstate.adaptors.django.config import config, registry

logger = logging.getLogger(__name__)


class RelStateDjangoConfig(DjangoAppConfig):
    name = "relstate.adaptors.django"
    verbose_name = "relstate Django Integration"
    label = "relstate"

    def ready(self):
        config.initialize()

        schemas = sorted(registry.schema_paths())
        if schemas:
            logger.info(f"relstate is resolving schemas: {', '.join(schemas)}")
        else:
            logger.info("relstate is running but no schemas are registered.")
