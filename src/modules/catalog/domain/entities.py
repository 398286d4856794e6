"""Catalog domain entities."""

import json
from collections.abc import Iterable, Iterator, Mapping
from enum import Enum
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    """目录分区。顺序即展示与查找顺序。"""

    TOP_RATED = "top-rated"
    LATEST = "latest"
    PC = "pc"
    GAME = "game"
    EDITING = "editing"


CATEGORY_ORDER: tuple[Category, ...] = tuple(Category)


class App(BaseModel):
    """One app listing.

    Wire names are camelCase (``additionalImages``, ``descriptionFull`` …).
    Optional text fields are never ``None``: missing values become ``""`` and
    missing image lists become ``[]``. Fields written by other clients that
    are not modelled here are kept as extras so a write-back does not drop
    them.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: str = ""
    title: str = ""
    category: str = ""
    subtitle: str = ""
    image: str = ""
    additional_images: tuple[str, ...] = ()
    description: str = ""
    description_full: str = ""
    download_link: str = ""
    telegram_link: str = ""
    youtube_link: str = ""
    video_link: str = ""
    report_details: str = ""
    size: str = ""
    requirements: str = ""
    downloads: str = ""
    store: str = ""
    version: str = ""
    date: str = ""
    created_at: int | str | None = None

    @field_validator(
        "id",
        "title",
        "category",
        "subtitle",
        "image",
        "description",
        "description_full",
        "download_link",
        "telegram_link",
        "youtube_link",
        "video_link",
        "report_details",
        "size",
        "requirements",
        "downloads",
        "store",
        "version",
        "date",
        mode="before",
    )
    @classmethod
    def _to_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, str):
            return value
        # Other clients may store numbers, booleans or nested values here;
        # keep them as their JSON text instead of rejecting the record.
        return json.dumps(value, ensure_ascii=False)

    @field_validator("created_at", mode="before")
    @classmethod
    def _normalize_created_at(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bool):
            return json.dumps(value)
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, int):
            return value
        return json.dumps(value, ensure_ascii=False)

    @field_validator("additional_images", mode="before")
    @classmethod
    def _normalize_images(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, str):
            # Some older records stored the list as a JSON string.
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                parsed = [value]
            value = parsed if isinstance(parsed, list) else [value]
        if isinstance(value, Mapping):
            value = list(value.values())
        if isinstance(value, Iterable):
            return tuple(
                item for item in value if isinstance(item, str) and item.strip()
            )
        return (json.dumps(value),)

    @property
    def extra_fields(self) -> dict[str, Any]:
        return dict(self.__pydantic_extra__ or {})

    def to_document(self) -> dict[str, Any]:
        """Serialize with wire (camelCase) names, omitting unset ``createdAt``."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _empty_sections() -> dict[Category, tuple[App, ...]]:
    return {category: () for category in CATEGORY_ORDER}


def _ordered_entries(raw_section: Any) -> list[Any]:
    """Firebase returns sparse arrays as objects keyed by index."""
    if raw_section is None:
        return []
    if isinstance(raw_section, list):
        return raw_section
    if isinstance(raw_section, Mapping):
        items = list(raw_section.items())
        items.sort(
            key=lambda kv: (
                not str(kv[0]).isdigit(),
                int(kv[0]) if str(kv[0]).isdigit() else 0,
            )
        )
        return [value for _, value in items]
    raise ValueError(f"Catalog section must be a list or object, got {type(raw_section).__name__}")


class Catalog(BaseModel):
    """The whole catalog document: category -> ordered apps.

    Every category in ``CATEGORY_ORDER`` is always present.
    """

    model_config = ConfigDict(frozen=True)

    sections: dict[Category, tuple[App, ...]] = Field(default_factory=_empty_sections)

    @field_validator("sections", mode="after")
    @classmethod
    def _fill_categories(
        cls, value: dict[Category, tuple[App, ...]]
    ) -> dict[Category, tuple[App, ...]]:
        return {category: tuple(value.get(category, ())) for category in CATEGORY_ORDER}

    @classmethod
    def empty(cls) -> "Catalog":
        return cls()

    @classmethod
    def from_document(cls, payload: Any) -> "Catalog":
        """Build a Catalog from the stored JSON structure.

        Raises:
            ValueError: if the payload is not a JSON object (or ``null``).
        """
        if payload is None:
            return cls.empty()
        if not isinstance(payload, Mapping):
            raise ValueError("Catalog document must be a JSON object")

        sections: dict[Category, tuple[App, ...]] = {}
        for category in CATEGORY_ORDER:
            apps: list[App] = []
            for raw_app in _ordered_entries(payload.get(category.value)):
                if not isinstance(raw_app, Mapping):
                    if raw_app is not None:
                        logger.warning(f"Dropping non-object entry in '{category.value}'")
                    continue
                app = App.model_validate(raw_app)
                if not app.category and category is not Category.LATEST:
                    app = app.model_copy(update={"category": category.value})
                apps.append(app)
            sections[category] = tuple(apps)
        return cls(sections=sections)

    def to_document(self) -> dict[str, list[dict[str, Any]]]:
        return {
            category.value: [app.to_document() for app in apps]
            for category, apps in self.sections.items()
        }

    def section(self, category: Category | str) -> tuple[App, ...]:
        return self.sections[Category(category)]

    def __getitem__(self, category: Category | str) -> tuple[App, ...]:
        return self.section(category)

    def with_section(self, category: Category | str, apps: Iterable[App]) -> "Catalog":
        sections = dict(self.sections)
        sections[Category(category)] = tuple(apps)
        return Catalog(sections=sections)

    def iter_apps(self) -> Iterator[tuple[Category, App]]:
        for category in CATEGORY_ORDER:
            for app in self.sections[category]:
                yield category, app

    @property
    def is_empty(self) -> bool:
        return not any(self.sections.values())

    @property
    def app_count(self) -> int:
        return sum(len(apps) for apps in self.sections.values())

    def counts(self) -> dict[str, int]:
        return {category.value: len(apps) for category, apps in self.sections.items()}
