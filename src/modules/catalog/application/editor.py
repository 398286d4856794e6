"""Admin editing commands.

Each command is one ``CatalogService.write`` call; remote errors propagate to
the caller unchanged.
"""

from collections.abc import Mapping
from typing import Any

from loguru import logger

from src.modules.catalog.application.services import CatalogService
from src.modules.catalog.domain import operations
from src.modules.catalog.domain.entities import App, Catalog, Category
from src.modules.catalog.domain.exceptions import AppNotFoundError
from src.modules.catalog.domain.ports import Clock, system_clock

AppDraft = App | Mapping[str, Any]


def _as_app(draft: AppDraft) -> App:
    if isinstance(draft, App):
        return draft
    return App.model_validate(dict(draft))


class CatalogEditor:
    """Add, update and delete apps while keeping ``latest`` consistent."""

    def __init__(self, service: CatalogService, clock: Clock = system_clock) -> None:
        self.service = service
        self._clock = clock

    async def add_app(self, draft: AppDraft) -> App:
        """Insert a new app at the front of its category and of ``latest``.

        A fresh id and ``createdAt`` are assigned when the draft has none.
        """
        base = _as_app(draft)
        created: dict[str, App] = {}

        def mutate(catalog: Catalog) -> Catalog:
            now_ms = self._clock()
            update: dict[str, Any] = {}
            if not base.id:
                update["id"] = operations.new_app_id(catalog, now_ms)
            if base.created_at is None:
                update["created_at"] = now_ms
            app = base.model_copy(update=update) if update else base
            created["app"] = app
            return operations.insert_app(catalog, app)

        await self.service.write(mutate)
        app = created["app"]
        logger.info(f"Added app {app.id} '{app.title}' to {app.category}")
        return app

    async def update_app(self, category: Category | str, index: int, draft: AppDraft) -> App:
        """Replace ``category[index]`` with ``draft``.

        The stored ``id`` and ``createdAt`` are kept. Images missing from the
        draft are taken from the existing entry.
        """
        incoming = _as_app(draft)
        updated: dict[str, App] = {}

        def mutate(catalog: Catalog) -> Catalog:
            section = catalog.section(category)
            if index < 0 or index >= len(section):
                raise AppNotFoundError(Category(category).value, index)
            existing = section[index]

            update: dict[str, Any] = {
                "id": existing.id,
                "created_at": existing.created_at
                if existing.created_at is not None
                else self._clock(),
            }
            if not incoming.category:
                update["category"] = existing.category or Category(category).value
            if not incoming.image:
                update["image"] = existing.image
            if not incoming.additional_images:
                update["additional_images"] = existing.additional_images

            app = incoming.model_copy(update=update)
            updated["app"] = app
            return operations.edit_app(catalog, category, index, app)

        await self.service.write(mutate)
        app = updated["app"]
        logger.info(f"Updated app {app.id} '{app.title}'")
        return app

    async def delete_app(self, category: Category | str, index: int) -> None:
        await self.service.write(
            lambda catalog: operations.delete_app(catalog, category, index)
        )
        logger.info(f"Deleted {Category(category).value}[{index}]")

    async def stats(self) -> dict[str, int]:
        """Number of apps per category."""
        catalog = await self.service.read()
        return catalog.counts()
