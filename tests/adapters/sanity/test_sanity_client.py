from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx

from sanflow.adapters.http_resilience import ResilientClient
from sanflow.adapters.sanity import SanityClient, SanitySettingsStore, build_query
from sanflow.config.http_resilience import ResilienceConfig
from sanflow.config.sanity import SanityConfig
from sanflow.domain.model import SourceRecord
from sanflow.domain.ports import ReferenceFilter, SourceQuery
from tests.support.fakes import RecordingSleep

BASE_URL = "https://proj.api.sanity.io/v2023-01-01/"


def _client(responses: list[Any], requests: list[httpx.Request]) -> SanityClient:
    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=responses.pop(0))

    resilience = ResilienceConfig(name="sanity", base_url=BASE_URL)
    config = SanityConfig(
        project_id="proj",
        dataset="production",
        api_version="2023-01-01",
        api_token="token",
        resilience=resilience,
    )
    http = ResilientClient(
        resilience, sleep=RecordingSleep(), transport=httpx.MockTransport(handler)
    )
    return SanityClient(config=config, client=http)


def _query(**kwargs: Any) -> SourceQuery:
    return SourceQuery(
        collection_key="artwork", document_type="artwork", projection="title", **kwargs
    )


def test_full_query_excludes_drafts() -> None:
    groq, params = build_query(_query())

    assert groq == (
        '*[_type == $type && !(_id in path("drafts.**"))] | order(_createdAt asc) '
        "{_id, _type, _updatedAt, title}"
    )
    assert params == {"type": "artwork"}


def test_incremental_limited_query() -> None:
    groq, params = build_query(_query(since="2024-01-01T00:00:00Z", limit=5))

    assert "_updatedAt > $since" in groq
    assert "| order(_createdAt asc)[0...5] {" in groq
    assert params["since"] == "2024-01-01T00:00:00Z"


def test_reference_filtered_query() -> None:
    groq, params = build_query(
        _query(referencing=ReferenceFilter(field="creator", ids=("cr1", "cr2")))
    )

    assert "creator._ref in $refIds" in groq
    assert params["refIds"] == ["cr1", "cr2"]


def test_single_item_query_matches_published_and_draft() -> None:
    groq, params = build_query(_query(item_id="drafts.abc", limit=1))

    assert "_id in [$itemId, $draftId]" in groq
    assert "drafts.**" not in groq
    assert "[0..." not in groq
    assert params == {"type": "artwork", "itemId": "abc", "draftId": "drafts.abc"}


def test_fetch_records_prefers_published_documents() -> None:
    requests: list[httpx.Request] = []
    result = [
        {"_id": "drafts.a", "_type": "artwork", "title": "Draft A"},
        {"_id": "a", "_type": "artwork", "_updatedAt": "2024-02-01T00:00:00Z", "title": "A"},
        {"_id": "drafts.b", "_type": "artwork", "title": "Only draft"},
    ]

    async def scenario() -> list[SourceRecord]:
        async with _client([{"result": result, "ms": 3}], requests) as client:
            return await client.fetch_records(_query(item_id="a"))

    records = asyncio.run(scenario())

    assert [(record.source_id, record.get("title")) for record in records] == [
        ("a", "A"),
        ("b", "Only draft"),
    ]
    assert records[0].updated_at == "2024-02-01T00:00:00Z"
    assert records[0].collection_key == "artwork"
    assert "_id" not in records[0].data
    request = requests[0]
    assert request.url.path == "/v2023-01-01/data/query/production"
    assert json.loads(request.url.params["$type"]) == "artwork"
    assert json.loads(request.url.params["$itemId"]) == "a"


def test_fetch_records_handles_empty_result() -> None:
    async def scenario() -> list[SourceRecord]:
        async with _client([{"result": None}], []) as client:
            return await client.fetch_records(_query())

    assert asyncio.run(scenario()) == []


def test_settings_store_reads_and_replaces_documents() -> None:
    requests: list[httpx.Request] = []
    responses = [
        {"result": {"_id": "id-mappings", "idMappings": '{"artwork:a": "wf-1"}'}},
        {"result": None},
        {"transactionId": "tx-1", "results": [{"id": "sync-hashes", "operation": "update"}]},
    ]

    async def scenario() -> tuple[str | None, str | None]:
        async with _client(responses, requests) as client:
            store = SanitySettingsStore(client)
            loaded = await store.load("id-mappings")
            missing = await store.load("asset-mappings")
            await store.save("sync-hashes", '{"artwork:a": "d1"}')
            return loaded, missing

    loaded, missing = asyncio.run(scenario())

    assert loaded == '{"artwork:a": "wf-1"}'
    assert missing is None
    mutation = requests[2]
    assert mutation.url.path == "/v2023-01-01/data/mutate/production"
    [operation] = json.loads(mutation.content)["mutations"]
    document = operation["createOrReplace"]
    assert document["_id"] == "sync-hashes"
    assert document["_type"] == "webflowSyncSettings"
    assert document["hashes"] == '{"artwork:a": "d1"}'
