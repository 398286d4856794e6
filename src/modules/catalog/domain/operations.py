"""Catalog mutations that keep the ``latest`` section in step.

An app added to or edited in any other category is mirrored, by ``id``, in
``latest``: newest first, never twice. Deleting an app removes its mirror.
Every function returns a new Catalog so the caller can hand the result to a
single ``write_all``.
"""

from src.modules.catalog.domain.entities import CATEGORY_ORDER, App, Catalog, Category
from src.modules.catalog.domain.exceptions import AppNotFoundError, InvalidAppError


def _resolve_category(app: App) -> Category:
    try:
        return Category(app.category)
    except ValueError:
        raise InvalidAppError(f"unknown category '{app.category}'") from None


def _app_at(catalog: Catalog, category: Category, index: int) -> App:
    apps = catalog.section(category)
    if index < 0 or index >= len(apps):
        raise AppNotFoundError(category.value, index)
    return apps[index]


def upsert_latest(catalog: Catalog, app: App, *, in_place: bool = False) -> Catalog:
    """Mirror ``app`` into ``latest``.

    With ``in_place`` an existing entry keeps its position; otherwise (or when
    absent) the app goes to the front. Any other entry with the same id is
    dropped.
    """
    latest = list(catalog.section(Category.LATEST))
    position = next((i for i, item in enumerate(latest) if item.id == app.id), None)

    if in_place and position is not None:
        latest[position] = app
        latest = [
            item for i, item in enumerate(latest) if i == position or item.id != app.id
        ]
    else:
        latest = [app] + [item for item in latest if item.id != app.id]
    return catalog.with_section(Category.LATEST, latest)


def remove_from_latest(catalog: Catalog, app_id: str) -> Catalog:
    latest = catalog.section(Category.LATEST)
    return catalog.with_section(
        Category.LATEST, [item for item in latest if item.id != app_id]
    )


def insert_app(catalog: Catalog, app: App) -> Catalog:
    """Add a new app to the front of its category and of ``latest``."""
    if not app.id:
        raise InvalidAppError("app has no id")
    category = _resolve_category(app)

    if category is Category.LATEST:
        return upsert_latest(catalog, app)
    if _find_primary(catalog, app.id) is not None:
        raise InvalidAppError(f"id '{app.id}' is already in use")

    updated = catalog.with_section(category, [app, *catalog.section(category)])
    return upsert_latest(updated, app)


def edit_app(catalog: Catalog, category: Category | str, index: int, app: App) -> Catalog:
    """Replace the app at ``category[index]``.

    ``app.id`` must match the existing entry. If ``app.category`` names a
    different category the app is moved to the front of that one.
    """
    section = Category(category)
    existing = _app_at(catalog, section, index)
    if app.id != existing.id:
        raise InvalidAppError(
            f"id '{app.id}' does not match '{existing.id}' at {section.value}[{index}]"
        )

    if section is Category.LATEST:
        # Editing the mirror: every other copy of the app follows.
        updated = upsert_latest(catalog, app, in_place=True)
        for other in CATEGORY_ORDER:
            apps = updated.section(other)
            if other is Category.LATEST or all(item.id != app.id for item in apps):
                continue
            updated = updated.with_section(
                other, [app if item.id == app.id else item for item in apps]
            )
        return updated

    target = _resolve_category(app)
    apps = list(catalog.section(section))
    if target is section:
        apps[index] = app
        updated = catalog.with_section(section, apps)
    else:
        del apps[index]
        updated = catalog.with_section(section, apps)
        updated = updated.with_section(target, [app, *updated.section(target)])
    return upsert_latest(updated, app, in_place=True)


def delete_app(catalog: Catalog, category: Category | str, index: int) -> Catalog:
    """Remove ``category[index]`` and its ``latest`` mirror."""
    section = Category(category)
    existing = _app_at(catalog, section, index)

    apps = list(catalog.section(section))
    del apps[index]
    updated = catalog.with_section(section, apps)
    if existing.id:
        updated = remove_from_latest(updated, existing.id)
    return updated


def new_app_id(catalog: Catalog, now_ms: int) -> str:
    """Epoch-millisecond id, bumped until unused in every category."""
    taken = {app.id for _, app in catalog.iter_apps()}
    candidate = now_ms
    while str(candidate) in taken:
        candidate += 1
    return str(candidate)


def _find_primary(catalog: Catalog, app_id: str) -> tuple[Category, int] | None:
    for category in catalog.sections:
        if category is Category.LATEST:
            continue
        for index, item in enumerate(catalog.section(category)):
            if item.id == app_id:
                return category, index
    return None
