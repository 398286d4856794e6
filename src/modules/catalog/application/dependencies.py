"""Catalog module application dependencies.

Builds the use-case objects around an already constructed CatalogService,
without importing infrastructure.
"""

from src.modules.catalog.application.editor import CatalogEditor
from src.modules.catalog.application.queries import CatalogQueries
from src.modules.catalog.application.services import CatalogService
from src.modules.catalog.domain.ports import Clock, system_clock


def get_catalog_editor(service: CatalogService, clock: Clock = system_clock) -> CatalogEditor:
    return CatalogEditor(service, clock)


def get_catalog_queries(service: CatalogService) -> CatalogQueries:
    return CatalogQueries(service)
