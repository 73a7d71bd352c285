"""Webflow Data API v2 client."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Any

from sanflow.adapters.http_resilience import ResilientClient
from sanflow.config.sync import DEFAULT_PAGE_SIZE, DEFAULT_PUBLISH_BATCH_SIZE
from sanflow.domain.model import LocaleMap

from .schema import WebflowCollectionList, WebflowItem, WebflowItemList, WebflowSite
from .translator import to_destination_collection, to_destination_record

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from sanflow.config.webflow import WebflowConfig
    from sanflow.domain.model import DestinationRecord, FieldMap
    from sanflow.domain.ports import DestinationCollection

log = getLogger(__name__)


class WebflowAPIError(RuntimeError):
    """Raised when the Webflow API returns an unexpected payload."""


class WebflowClient:
    """Destination store backed by one Webflow site.

    A single :class:`ResilientClient` is held for the lifetime of the object so
    that every collection shares its request gate.
    """

    def __init__(
        self,
        *,
        config: WebflowConfig,
        client: ResilientClient | None = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        publish_batch_size: int = DEFAULT_PUBLISH_BATCH_SIZE,
    ) -> None:
        self._config = config
        self._http = client or ResilientClient(config.resilience)
        self._page_size = page_size
        self._publish_batch_size = publish_batch_size
        self._locales: LocaleMap | None = None

    async def __aenter__(self) -> WebflowClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get_site(self) -> WebflowSite:
        payload = await self._http.request_json("GET", f"sites/{self._config.site_id}")
        return WebflowSite.model_validate(payload)

    async def get_locales(self) -> LocaleMap:
        if self._locales is None:
            site = await self.get_site()
            self._locales = resolve_locales(site, self._config.secondary_locale_tags)
            log.info(
                "Webflow locales: primary=%s, secondary=%s",
                self._locales.primary,
                self._locales.secondary,
            )
        return self._locales

    async def list_collections(self) -> list[DestinationCollection]:
        payload = await self._http.request_json(
            "GET", f"sites/{self._config.site_id}/collections"
        )
        listing = WebflowCollectionList.model_validate(payload)
        return [to_destination_collection(collection) for collection in listing.collections]

    async def list_items(
        self,
        collection_id: str,
        *,
        cms_locale_id: str | None = None,
    ) -> list[DestinationRecord]:
        records: list[DestinationRecord] = []
        offset = 0
        while True:
            params: dict[str, str | int] = {"limit": self._page_size, "offset": offset}
            if cms_locale_id:
                params["cmsLocaleId"] = cms_locale_id
            payload = await self._http.request_json(
                "GET", f"collections/{collection_id}/items", params=params
            )
            page = WebflowItemList.model_validate(payload)
            records.extend(to_destination_record(item) for item in page.items)
            offset += len(page.items)
            total = page.pagination.total if page.pagination else None
            if len(page.items) < self._page_size or (total is not None and offset >= total):
                break
        log.debug(
            "Listed %s items from collection %s (locale=%s)",
            len(records),
            collection_id,
            cms_locale_id,
        )
        return records

    async def get_item(self, collection_id: str, item_id: str) -> DestinationRecord:
        payload = await self._http.request_json(
            "GET", f"collections/{collection_id}/items/{item_id}"
        )
        return to_destination_record(WebflowItem.model_validate(payload))

    async def create_item(
        self,
        collection_id: str,
        field_data: FieldMap,
        *,
        cms_locale_ids: Sequence[str] = (),
        is_draft: bool = False,
    ) -> DestinationRecord:
        body: dict[str, Any] = {
            "isArchived": False,
            "isDraft": is_draft,
            "fieldData": field_data,
        }
        if len(cms_locale_ids) > 1:
            body["cmsLocaleIds"] = list(cms_locale_ids)
            path = f"collections/{collection_id}/items/bulk"
        else:
            if cms_locale_ids:
                body["cmsLocaleId"] = cms_locale_ids[0]
            path = f"collections/{collection_id}/items"
        payload = await self._http.request_json("POST", path, json=body)
        return to_destination_record(WebflowItem.model_validate(_first_item(payload)))

    async def update_item(
        self,
        collection_id: str,
        item_id: str,
        field_data: FieldMap,
        *,
        cms_locale_id: str | None = None,
    ) -> None:
        item: dict[str, Any] = {"id": item_id, "fieldData": field_data}
        if cms_locale_id:
            item["cmsLocaleId"] = cms_locale_id
        await self._http.request_json(
            "PATCH", f"collections/{collection_id}/items", json={"items": [item]}
        )

    async def delete_item(self, collection_id: str, item_id: str) -> None:
        await self._http.request_json("DELETE", f"collections/{collection_id}/items/{item_id}")

    async def publish_items(
        self,
        collection_id: str,
        item_ids: Sequence[str],
        *,
        cms_locale_ids: Sequence[str] = (),
    ) -> None:
        ids = list(item_ids)
        for start in range(0, len(ids), self._publish_batch_size):
            batch = ids[start : start + self._publish_batch_size]
            if cms_locale_ids:
                body: dict[str, Any] = {
                    "items": [
                        {"id": item_id, "cmsLocaleIds": list(cms_locale_ids)} for item_id in batch
                    ]
                }
            else:
                body = {"itemIds": batch}
            await self._http.request_json(
                "POST", f"collections/{collection_id}/items/publish", json=body
            )
            log.info("Published %s items in collection %s", len(batch), collection_id)


def resolve_locales(site: WebflowSite, secondary_tags: Sequence[str]) -> LocaleMap:
    """Map the site's locale configuration onto primary/secondary roles.

    The secondary locale is the first enabled secondary whose tag matches one of
    ``secondary_tags`` exactly or by language subtag (``de`` matches ``de-AT``).
    """

    if site.locales is None:
        return LocaleMap(primary=None)
    primary = site.locales.primary.cms_locale_id if site.locales.primary else None
    wanted = {tag.lower() for tag in secondary_tags}
    wanted_languages = {tag.split("-", 1)[0] for tag in wanted}
    candidates = [locale for locale in site.locales.secondary if locale.enabled and locale.tag]
    for matcher in (
        lambda tag: tag in wanted,
        lambda tag: tag.split("-", 1)[0] in wanted_languages,
    ):
        for locale in candidates:
            if locale.tag and matcher(locale.tag.lower()) and locale.cms_locale_id:
                return LocaleMap(primary=primary, secondary=locale.cms_locale_id)
    return LocaleMap(primary=primary)


def _first_item(payload: dict[str, Any]) -> dict[str, Any]:
    items = payload.get("items")
    if isinstance(items, list):
        if not items or not isinstance(items[0], dict):
            raise WebflowAPIError("Webflow create response contained no items")
        return items[0]
    return payload
