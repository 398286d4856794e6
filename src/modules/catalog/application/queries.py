"""Read-side lookups used by the detail and search pages."""

import re
from dataclasses import dataclass

from src.modules.catalog.application.services import CatalogService
from src.modules.catalog.domain.entities import CATEGORY_ORDER, App, Catalog, Category

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")
_SEARCH_NOISE = re.compile(r"[^a-z0-9\s]")


def slugify(title: str) -> str:
    """``"Pokémon GO!"`` -> ``"pok-mon-go"``."""
    return _SLUG_SEPARATORS.sub("-", title.lower()).strip("-")


def normalize_text(text: str) -> str:
    return _SEARCH_NOISE.sub("", text.lower()).strip()


@dataclass(frozen=True)
class FoundApp:
    app: App
    category: Category


class CatalogQueries:
    def __init__(self, service: CatalogService) -> None:
        self.service = service

    async def find_app(
        self,
        app_id: str | None = None,
        title: str | None = None,
        page_filename: str | None = None,
    ) -> FoundApp | None:
        """Locate one app by id, then by title slug, then by page filename.

        Categories are scanned in display order, so an app mirrored in
        ``latest`` is reported under the first category holding it.
        """
        catalog = await self.service.read()

        if app_id:
            found = _first_match(catalog, lambda app: app.id == app_id)
            if found is not None:
                return found

        if title:
            wanted = slugify(title)
            found = _first_match(catalog, lambda app: slugify(app.title) == wanted)
            if found is not None:
                return found

        if page_filename:
            stem = page_filename.removesuffix(".html").lower()
            if stem:
                return _first_match(
                    catalog,
                    lambda app: bool(slugify(app.title))
                    and (stem in slugify(app.title) or slugify(app.title) in stem),
                )

        return None

    async def search(self, query: str) -> list[App]:
        """Apps where every query word appears in one of the searchable fields."""
        words = normalize_text(query or "").split()
        if not words:
            return []

        catalog = await self.service.read()
        results: list[App] = []
        for app in _unique_apps(catalog):
            haystacks = [
                normalize_text(app.title),
                normalize_text(app.description),
                normalize_text(app.subtitle),
                normalize_text(app.category),
                normalize_text(app.version),
            ]
            if all(any(word in text for text in haystacks) for word in words):
                results.append(app)
        return results

    async def section(self, category: Category | str) -> tuple[App, ...]:
        catalog = await self.service.read()
        return catalog.section(category)


def _first_match(catalog: Catalog, predicate) -> FoundApp | None:
    for category in CATEGORY_ORDER:
        for app in catalog.section(category):
            if predicate(app):
                return FoundApp(app=app, category=category)
    return None


def _unique_apps(catalog: Catalog) -> list[App]:
    seen: set[str] = set()
    apps: list[App] = []
    for _, app in catalog.iter_apps():
        key = app.id or f"{app.title}:{id(app)}"
        if key in seen:
            continue
        seen.add(key)
        apps.append(app)
    return apps
