"""The closed set of mirrored collections.

Each :class:`CollectionSpec` carries its source query, its destination field
rules, the destination collection names it may be published under and its
dependency phase. Phase 1 collections reference nothing, phase 2 collections
reference phase 1, phase 3 collections reference several earlier ones.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from sanflow.domain.model import LocaleRole
from sanflow.domain.ports import ReferenceFilter, SourceQuery
from sanflow.domain.projection import (
    FieldRule,
    ProjectionContext,
    image_field,
    image_list,
    localized,
    localized_field,
    structural,
)
from sanflow.domain.richtext import (
    blocks_to_html,
    blocks_to_text,
    clean_size,
    generate_slug,
    split_sections,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sanflow.domain.model import SourceRecord
    from sanflow.domain.ports import DestinationCollection

log = getLogger(__name__)

_NORMALIZE_INVALID = re.compile(r"[^a-z0-9]+")

type NameOf = Callable[[SourceRecord], str | None]


def normalize_name(value: str | None) -> str:
    return _NORMALIZE_INVALID.sub("-", (value or "").strip().lower())


def source_slug(record: SourceRecord) -> str | None:
    slug = record.get("slug")
    if isinstance(slug, Mapping):
        slug = slug.get("current")
    return slug if isinstance(slug, str) and slug else None


@dataclass(slots=True, frozen=True)
class CollectionSpec:
    key: str
    display_name: str
    document_type: str
    phase: int
    projection: str
    rules: tuple[FieldRule, ...]
    destination_names: tuple[str, ...]
    name_of: NameOf
    order: str = "_createdAt asc"
    references: tuple[str, ...] = ()

    def query(
        self,
        *,
        item_id: str | None = None,
        since: str | None = None,
        limit: int | None = None,
        referencing: ReferenceFilter | None = None,
    ) -> SourceQuery:
        return SourceQuery(
            collection_key=self.key,
            document_type=self.document_type,
            projection=self.projection,
            order=self.order,
            item_id=item_id,
            since=since,
            limit=limit,
            referencing=referencing,
        )

    def matches(self, selector: str) -> bool:
        """``True`` when ``selector`` names this collection by key or display name."""

        return selector == self.key or normalize_name(selector) in {
            normalize_name(self.key),
            normalize_name(self.display_name),
        }


@dataclass(slots=True, frozen=True)
class ReverseLink:
    """Back-reference filled after every forward relation exists.

    ``target_field`` of each ``target`` item lists the ids of the ``source``
    items whose ``source_field`` points at it.
    """

    target: str
    target_field: str
    source: str
    source_field: str


def _localized_name(field: str) -> NameOf:
    def name_of(record: SourceRecord) -> str | None:
        return localized(record.get(field), LocaleRole.PRIMARY, "") or None

    return name_of


def _plain_name(*fields: str) -> NameOf:
    def name_of(record: SourceRecord) -> str | None:
        for field in fields:
            value = record.get(field)
            if isinstance(value, Mapping):
                value = localized(value, LocaleRole.PRIMARY, "")
            if isinstance(value, str) and value:
                return value
        return None

    return name_of


def _slug_rule(name_of: NameOf) -> FieldRule:
    def extract(ctx: ProjectionContext) -> str:
        return source_slug(ctx.record) or generate_slug(name_of(ctx.record))

    return structural("slug", extract)


def _name_rule(field: str) -> FieldRule:
    return localized_field("name", lambda ctx: ctx.text(field, "Untitled"))


def _text_rule(name: str, field: str) -> FieldRule:
    return localized_field(name, lambda ctx: ctx.text(field, fallback=False))


def _plain(field: str, default: Any = "") -> Callable[[ProjectionContext], Any]:
    return lambda ctx: ctx.get(field) or default


_SLUG_PROJECTION: Final[str] = "slug"
_IMAGE_PROJECTION: Final[str] = "{asset->{_id, url, originalFilename, altText, _updatedAt}, alt}"

LOCATION_TYPES: Final[dict[str, str]] = {
    "museum": "Museum",
    "shop-gallery": "Shop / Gallery",
    "studio": "Studio",
}
DEFAULT_LOCATION_TYPE: Final[str] = "Shop / Gallery"


def _birth_year(ctx: ProjectionContext) -> int | None:
    value = ctx.get("birthYear")
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip()[:4])
    except ValueError:
        log.warning("Ignoring unparseable birth year %r on %s", value, ctx.record.source_id)
        return None


_CREATOR_IMAGE_FIELDS: Final[dict[str, str]] = {
    "cover": "hero-image",
    "image": "profile-image",
    "studioImage": "studio-image",
    "portraitImage": "portrait-image",
}


def _creator_image(field: str, name: str) -> FieldRule:
    def extract(ctx: ProjectionContext) -> dict[str, str] | None:
        return image_field(ctx.get(field), ctx.role, ctx.get("name") or "")

    return structural(name, extract, omit_when_none=True)


def _specialties(ctx: ProjectionContext) -> str:
    values = ctx.text("specialties", fallback=False)
    if isinstance(values, list):
        return ", ".join(str(value) for value in values if value)
    return values or ""


def _artwork_name(ctx: ProjectionContext) -> str:
    return ctx.get("name") or localized(ctx.get("workTitle"), LocaleRole.PRIMARY, "") or ""


def _artwork_image_alt(ctx: ProjectionContext) -> str:
    creator = ctx.get("creator")
    creator_name = creator.get("name") if isinstance(creator, Mapping) else None
    artwork_name = _artwork_name(ctx)
    parts = [part for part in (creator_name, artwork_name) if part]
    return " - ".join(parts) or "Artwork image"


def _artwork_main_image(ctx: ProjectionContext) -> dict[str, str] | None:
    return image_field(ctx.get("mainImage"), ctx.role, _artwork_name(ctx) or "Main image")


def _artwork_images(ctx: ProjectionContext) -> list[dict[str, str]]:
    return image_list(ctx.get("images"), ctx.role, _artwork_image_alt(ctx))


def _article_creator_name(ctx: ProjectionContext) -> str:
    creator = ctx.get("featuredCreator")
    featured_name = creator.get("name") if isinstance(creator, Mapping) else None
    return ctx.get("creatorName") or featured_name or ""


def _article_title(record: SourceRecord) -> str | None:
    return localized(record.get("title"), LocaleRole.PRIMARY, "") or None


def _article_slug(ctx: ProjectionContext) -> str:
    slug = source_slug(ctx.record)
    if slug:
        return slug
    title = _article_title(ctx.record) or "Untitled"
    return generate_slug(f"{_article_creator_name(ctx)} {title}".strip())


def _article_section_text(index: int) -> FieldRule:
    def extract(ctx: ProjectionContext) -> str | None:
        sections = split_sections(ctx.text("fullText", default=None, fallback=False))
        return blocks_to_html(sections[index])

    return localized_field(f"section-{index + 1}-text", extract)


def _article_section_images(index: int) -> FieldRule:
    return structural(
        f"section-{index + 1}-images",
        lambda ctx: image_list(ctx.get(f"section{index + 1}Images"), ctx.role),
    )


def _article_section_captions(index: int) -> FieldRule:
    return localized_field(
        f"section-{index + 1}-captions",
        lambda ctx: blocks_to_text(ctx.text(f"section{index + 1}Captions", fallback=False)),
    )


def _named_spec(
    key: str,
    display_name: str,
    destination_names: tuple[str, ...],
    *,
    phase: int = 1,
    extra_projection: str = "",
    extra_rules: tuple[FieldRule, ...] = (),
    name_field: str = "name",
    order: str | None = None,
    references: tuple[str, ...] = (),
) -> CollectionSpec:
    name_of = _localized_name(name_field)
    projection = ", ".join(
        part for part in (name_field, "description", _SLUG_PROJECTION, extra_projection) if part
    )
    return CollectionSpec(
        key=key,
        display_name=display_name,
        document_type=key,
        phase=phase,
        projection=projection,
        rules=(_name_rule(name_field), _slug_rule(name_of), *extra_rules),
        destination_names=destination_names,
        name_of=name_of,
        order=order or f"{name_field}.en asc",
        references=references,
    )


MATERIAL_TYPE = _named_spec(
    "materialType",
    "Material Types",
    ("material-types", "material type", "material types", "materialtype"),
    extra_projection="sortOrder",
    extra_rules=(structural("sort-order", _plain("sortOrder", 0)),),
    order="sortOrder asc, name.en asc",
)
FINISH = _named_spec("finish", "Finishes", ("finishes", "finish"))
CATEGORY = _named_spec(
    "category",
    "Mediums",
    ("medium", "mediums", "category", "categories"),
    name_field="title",
    extra_rules=(_text_rule("description", "description"),),
)
LOCATION = _named_spec(
    "location",
    "Locations",
    ("locations", "location"),
    extra_projection="type, website, email",
    extra_rules=(
        structural(
            "location-type",
            lambda ctx: LOCATION_TYPES.get(ctx.get("type") or "", DEFAULT_LOCATION_TYPE),
        ),
        structural("website", _plain("website")),
        structural("email", _plain("email")),
    ),
)
AUTHOR = _named_spec(
    "author",
    "Authors",
    ("authors", "author"),
    extra_projection="bio",
    extra_rules=(
        localized_field("bio", lambda ctx: blocks_to_html(ctx.text("bio", fallback=False))),
    ),
)
PHOTOGRAPHER = _named_spec(
    "photographer",
    "Photographers",
    ("photographers", "photographer"),
    extra_projection="bio",
    extra_rules=(
        localized_field("bio", lambda ctx: blocks_to_html(ctx.text("bio", fallback=False))),
    ),
)
MATERIAL = _named_spec(
    "material",
    "Materials",
    ("materials", "material"),
    phase=2,
    extra_projection="materialType->{_id, name}",
    extra_rules=(
        structural("material-type", lambda ctx: ctx.ref("materialType", "materialType")),
        _text_rule("description", "description"),
    ),
    references=("materialType",),
)
MEDIUM = _named_spec("medium", "Types", ("type", "types", "media", "medium"), phase=2)

_creator_name = _plain_name("name")
CREATOR = CollectionSpec(
    key="creator",
    display_name="Creators",
    document_type="creator",
    phase=2,
    projection=", ".join(
        (
            "name",
            "lastName",
            f"cover{_IMAGE_PROJECTION}",
            f"image{_IMAGE_PROJECTION}",
            f"studioImage{_IMAGE_PROJECTION}",
            f"portraitImage{_IMAGE_PROJECTION}",
            "biography",
            "portrait",
            "nationality",
            "specialties",
            _SLUG_PROJECTION,
            "website",
            "email",
            "birthYear",
            "category",
            "associatedLocations",
        )
    ),
    rules=(
        structural("name", _plain("name", "Untitled")),
        structural("last-name", _plain("lastName")),
        _slug_rule(_creator_name),
        *(_creator_image(field, name) for field, name in _CREATOR_IMAGE_FIELDS.items()),
        structural("website", _plain("website")),
        structural("email", _plain("email")),
        structural("birth-year", _birth_year),
        structural("category", lambda ctx: ctx.ref("category", "category")),
        structural("locations", lambda ctx: ctx.refs("location", "associatedLocations")),
        localized_field(
            "biography", lambda ctx: blocks_to_text(ctx.text("biography", fallback=False))
        ),
        localized_field(
            "portrait-english", lambda ctx: blocks_to_text(ctx.text("portrait", fallback=False))
        ),
        _text_rule("nationality", "nationality"),
        localized_field("specialties", _specialties),
    ),
    destination_names=("creators", "creator", "profiles", "profile"),
    name_of=_creator_name,
    order="name asc",
    references=("category", "location"),
)

_artwork_name_of = _plain_name("name", "workTitle")
ARTWORK = CollectionSpec(
    key="artwork",
    display_name="Artworks",
    document_type="artwork",
    phase=3,
    projection=", ".join(
        (
            "name",
            "workTitle",
            "description",
            "creator->{_id, name}",
            "materials[]->{_id}",
            "medium[]->{_id}",
            "finishes[]->{_id}",
            "size",
            "year",
            "price",
            _SLUG_PROJECTION,
            f"mainImage{_IMAGE_PROJECTION}",
            f"images[]{_IMAGE_PROJECTION}",
        )
    ),
    rules=(
        structural("name", lambda ctx: ctx.get("name") or "Untitled"),
        _slug_rule(_artwork_name_of),
        localized_field("work-title", lambda ctx: ctx.text("workTitle")),
        _text_rule("description", "description"),
        structural("creator", lambda ctx: ctx.ref("creator", "creator")),
        structural("materials", lambda ctx: ctx.refs("material", "materials")),
        structural("medium", lambda ctx: ctx.refs("medium", "medium")),
        structural("finishes", lambda ctx: ctx.refs("finish", "finishes")),
        structural("size-dimensions", lambda ctx: clean_size(ctx.get("size"))),
        structural("year", lambda ctx: str(ctx.get("year") or "")),
        structural("price", lambda ctx: str(ctx.get("price") or "")),
        structural("main-image", _artwork_main_image, omit_when_none=True),
        structural("artwork-images", _artwork_images),
    ),
    destination_names=("artworks", "artwork", "works", "work"),
    name_of=_artwork_name_of,
    order="name asc",
    references=("creator", "material", "medium", "finish"),
)

ARTICLE = CollectionSpec(
    key="article",
    display_name="Articles",
    document_type="article",
    phase=3,
    projection=", ".join(
        (
            "title",
            _SLUG_PROJECTION,
            "date",
            "issue",
            "creatorName",
            "featuredCreator->{_id, name}",
            "authors[]->{_id}",
            "photographers[]->{_id}",
            f"heroImage{_IMAGE_PROJECTION}",
            "intro",
            "fullText",
            *(f"section{index}Images[]{_IMAGE_PROJECTION}" for index in range(1, 5)),
            *(f"section{index}Captions" for index in range(1, 5)),
            f"sectionFinalImage1{_IMAGE_PROJECTION}",
        )
    ),
    rules=(
        localized_field("name", lambda ctx: ctx.text("title", "Untitled")),
        structural("slug", _article_slug),
        structural("date", lambda ctx: ctx.get("date")),
        structural("issue", _plain("issue")),
        structural("creator-name", _article_creator_name),
        structural("featured-creator", lambda ctx: ctx.ref("creator", "featuredCreator")),
        structural("author-s", lambda ctx: ctx.refs("author", "authors")),
        structural("photographer-s", lambda ctx: ctx.refs("photographer", "photographers")),
        localized_field("hero-headline", lambda ctx: ctx.text("title", "Untitled")),
        structural(
            "hero-image",
            lambda ctx: image_field(ctx.get("heroImage"), ctx.role),
            omit_when_none=True,
        ),
        localized_field("intro", lambda ctx: blocks_to_html(ctx.text("intro", default=None))),
        *(_article_section_images(index) for index in range(4)),
        *(_article_section_text(index) for index in range(4)),
        *(_article_section_captions(index) for index in range(4)),
        structural(
            "section-final-image",
            lambda ctx: image_field(ctx.get("sectionFinalImage1"), ctx.role),
            omit_when_none=True,
        ),
    ),
    destination_names=("articles", "article"),
    name_of=_article_title,
    order="date desc",
    references=("creator", "author", "photographer"),
)

CATALOG: Final[tuple[CollectionSpec, ...]] = (
    MATERIAL_TYPE,
    FINISH,
    CATEGORY,
    LOCATION,
    AUTHOR,
    PHOTOGRAPHER,
    MATERIAL,
    MEDIUM,
    CREATOR,
    ARTWORK,
    ARTICLE,
)

REVERSE_LINKS: Final[tuple[ReverseLink, ...]] = (
    ReverseLink(target="creator", target_field="works", source="artwork", source_field="creator"),
)


def artworks_of_creators(creator_ids: Iterable[str]) -> tuple[str, ReferenceFilter]:
    """Collection key and source filter selecting every artwork of the given creators."""

    ids = tuple(dict.fromkeys(value.strip() for value in creator_ids if value.strip()))
    if not ids:
        raise ValueError("At least one creator id is required")
    return ARTWORK.key, ReferenceFilter(field="creator", ids=ids)


def get_spec(selector: str, catalog: Iterable[CollectionSpec] = CATALOG) -> CollectionSpec | None:
    return next((spec for spec in catalog if spec.matches(selector)), None)


def by_phase(catalog: Iterable[CollectionSpec] = CATALOG) -> list[list[CollectionSpec]]:
    """Group collections by phase, in ascending phase order and catalog order within."""

    phases: dict[int, list[CollectionSpec]] = {}
    for spec in catalog:
        phases.setdefault(spec.phase, []).append(spec)
    return [phases[phase] for phase in sorted(phases)]


def resolve_collection_ids(
    specs: Sequence[CollectionSpec],
    collections: Sequence[DestinationCollection],
    overrides: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Pick each spec's destination collection id.

    Explicit ``overrides`` win. Otherwise every destination collection is indexed
    by its normalised slug, display name and singular name, and each spec takes
    the first of its ``destination_names`` found in the index.
    """

    overrides = overrides or {}
    index: dict[str, str] = {}
    for collection in collections:
        for name in (collection.slug, collection.display_name, collection.singular_name):
            if name:
                index.setdefault(normalize_name(name), collection.collection_id)

    resolved: dict[str, str] = {}
    for spec in specs:
        if spec.key in overrides:
            resolved[spec.key] = overrides[spec.key]
            continue
        collection_id = next(
            (
                index[normalize_name(name)]
                for name in spec.destination_names
                if normalize_name(name) in index
            ),
            None,
        )
        if collection_id is None:
            log.warning("No destination collection found for %s", spec.key)
            continue
        resolved[spec.key] = collection_id
    return resolved
