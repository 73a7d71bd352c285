"""Port for the destination collection store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sanflow.domain.model import DestinationRecord, FieldMap, LocaleMap


@dataclass(slots=True, frozen=True)
class DestinationCollection:
    collection_id: str
    display_name: str
    singular_name: str | None = None
    slug: str | None = None


@runtime_checkable
class DestinationStore(Protocol):
    async def get_locales(self) -> LocaleMap: ...

    async def list_collections(self) -> list[DestinationCollection]: ...

    async def list_items(
        self,
        collection_id: str,
        *,
        cms_locale_id: str | None = None,
    ) -> list[DestinationRecord]: ...

    async def get_item(self, collection_id: str, item_id: str) -> DestinationRecord: ...

    async def create_item(
        self,
        collection_id: str,
        field_data: FieldMap,
        *,
        cms_locale_ids: Sequence[str] = (),
        is_draft: bool = False,
    ) -> DestinationRecord: ...

    async def update_item(
        self,
        collection_id: str,
        item_id: str,
        field_data: FieldMap,
        *,
        cms_locale_id: str | None = None,
    ) -> None: ...

    async def delete_item(self, collection_id: str, item_id: str) -> None: ...

    async def publish_items(
        self,
        collection_id: str,
        item_ids: Sequence[str],
        *,
        cms_locale_ids: Sequence[str] = (),
    ) -> None: ...
