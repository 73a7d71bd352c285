"""Sanity HTTP API client."""

from __future__ import annotations

import json
from logging import getLogger
from typing import TYPE_CHECKING, Any

from sanflow.adapters.http_resilience import ResilientClient
from sanflow.domain.model import SourceRecord

from .schema import SanityDocument, SanityMutationResponse, SanityQueryResponse

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from sanflow.config.sanity import SanityConfig
    from sanflow.domain.ports import SourceQuery

log = getLogger(__name__)

DRAFT_PREFIX = "drafts."


class SanityClient:
    """Read-only source store plus the mutation endpoint for settings documents."""

    def __init__(
        self,
        *,
        config: SanityConfig,
        client: ResilientClient | None = None,
    ) -> None:
        self._config = config
        self._http = client or ResilientClient(config.resilience)

    async def __aenter__(self) -> SanityClient:
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

    async def query(self, groq: str, params: Mapping[str, Any] | None = None) -> Any:
        query_params = {"query": groq}
        for name, value in (params or {}).items():
            query_params[f"${name}"] = json.dumps(value)
        payload = await self._http.request_json(
            "GET", f"data/query/{self._config.dataset}", params=query_params
        )
        return SanityQueryResponse.model_validate(payload).result

    async def mutate(self, mutations: list[dict[str, Any]]) -> SanityMutationResponse:
        payload = await self._http.request_json(
            "POST",
            f"data/mutate/{self._config.dataset}",
            params={"returnIds": "true"},
            json={"mutations": mutations},
        )
        return SanityMutationResponse.model_validate(payload)

    async def create_or_replace(self, document: dict[str, Any]) -> SanityMutationResponse:
        return await self.mutate([{"createOrReplace": document}])

    async def fetch_records(self, query: SourceQuery) -> list[SourceRecord]:
        groq, params = build_query(query)
        result = await self.query(groq, params)
        documents = [SanityDocument.model_validate(raw) for raw in result or []]
        records = _prefer_published(documents, query.collection_key)
        log.info("Fetched %s %s documents", len(records), query.document_type)
        return records


def build_query(query: SourceQuery) -> tuple[str, dict[str, Any]]:
    """Build the GROQ query and its parameters for one collection."""

    filters = ["_type == $type"]
    params: dict[str, Any] = {"type": query.document_type}
    if query.item_id:
        published_id = strip_draft_prefix(query.item_id)
        filters.append("_id in [$itemId, $draftId]")
        params["itemId"] = published_id
        params["draftId"] = f"{DRAFT_PREFIX}{published_id}"
    else:
        filters.append('!(_id in path("drafts.**"))')
    if query.since:
        filters.append("_updatedAt > $since")
        params["since"] = query.since
    if query.referencing is not None:
        filters.append(f"{query.referencing.field}._ref in $refIds")
        params["refIds"] = list(query.referencing.ids)

    window = ""
    if query.limit is not None and not query.item_id:
        window = f"[0...{query.limit}]"
    parts = ("_id", "_type", "_updatedAt", query.projection)
    projection = ", ".join(part for part in parts if part)
    groq = f"*[{' && '.join(filters)}] | order({query.order}){window} {{{projection}}}"
    return groq, params


def strip_draft_prefix(document_id: str) -> str:
    return document_id.removeprefix(DRAFT_PREFIX)


def _prefer_published(documents: list[SanityDocument], collection_key: str) -> list[SourceRecord]:
    by_id: dict[str, SanityDocument] = {}
    for document in documents:
        source_id = strip_draft_prefix(document.id)
        existing = by_id.get(source_id)
        if existing is not None and not existing.id.startswith(DRAFT_PREFIX):
            continue
        by_id[source_id] = document
    return [
        SourceRecord(
            source_id=source_id,
            collection_key=collection_key,
            data=document.fields,
            updated_at=document.updated_at,
        )
        for source_id, document in by_id.items()
    ]
