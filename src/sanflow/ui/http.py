"""FastAPI application exposing the sync as an HTTP endpoint."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from logging import getLogger
from typing import Any, Literal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sanflow.app import SingleItemResult, run_single_item, run_sync
from sanflow.domain.scheduler import Observer, ProgressEvent, RunOptions, RunResult

log = getLogger(__name__)

type SyncRunner = Callable[[Observer], Awaitable[RunResult | SingleItemResult]]

app = FastAPI(
    title="sanflow",
    description="Sanity to Webflow synchronisation",
    version="0.1.0",
)


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sync_type: Literal["full", "single-item"] = Field(default="full", alias="syncType")
    document_id: str | None = Field(default=None, alias="documentId")
    document_type: str | None = Field(default=None, alias="documentType")
    auto_publish: bool = Field(default=True, alias="autoPublish")
    streaming: bool = False
    limit: int | None = Field(default=None, ge=1)
    limit_per_collection: int | None = Field(default=None, ge=1, alias="limitPerCollection")
    only: str | None = None
    force: bool = False
    incremental: bool = False

    @property
    def single_item(self) -> bool:
        return self.sync_type == "single-item"


class InvalidSyncRequest(ValueError):
    """Raised for a request the scheduler cannot run."""


def _timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@app.exception_handler(InvalidSyncRequest)
async def invalid_request_handler(_request: Request, exc: InvalidSyncRequest) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "message": str(exc), "timestamp": _timestamp()},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    log.exception("Sync request failed")
    return JSONResponse(
        status_code=500,
        content={"error": "Sync failed", "message": str(exc), "timestamp": _timestamp()},
    )


@app.get("/api/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": _timestamp()}


@app.post("/api/sync", response_model=None)
async def post_sync(request: Request) -> JSONResponse | StreamingResponse:
    payload = await _read_body(request)
    return await _handle(_validate(payload))


@app.get("/api/sync", response_model=None)
async def get_sync(
    stream: str | None = None,
    limit: int | None = None,
    only: str | None = None,
) -> JSONResponse | StreamingResponse:
    body = _validate({"streaming": _truthy(stream), "limitPerCollection": limit, "only": only})
    return await _handle(body)


async def _handle(body: SyncRequest) -> JSONResponse | StreamingResponse:
    cancel_event = asyncio.Event()
    runner = _runner(body, cancel_event)
    if body.streaming:
        return StreamingResponse(
            _event_stream(runner, cancel_event),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )
    outcome = await runner(_log_progress)
    return JSONResponse(status_code=200, content=_summary(outcome))


def _runner(body: SyncRequest, cancel_event: asyncio.Event | None = None) -> SyncRunner:
    if body.single_item:
        if not body.document_id or not body.document_type:
            raise InvalidSyncRequest("single-item sync needs documentId and documentType")
        document_id = body.document_id
        document_type = body.document_type

        async def single(observer: Observer) -> SingleItemResult:
            return await run_single_item(
                document_id,
                document_type,
                force=body.force,
                publish=body.auto_publish,
                observer=observer,
            )

        return single

    options = RunOptions(
        only=body.only,
        limit=body.limit_per_collection or body.limit,
        incremental=body.incremental,
        force=body.force,
        publish=body.auto_publish,
        cancel_event=cancel_event,
    )

    async def full(observer: Observer) -> RunResult:
        return await run_sync(options, observer)

    return full


async def _event_stream(
    runner: SyncRunner,
    cancel_event: asyncio.Event | None = None,
) -> AsyncIterator[str]:
    """Run the sync in a task and relay its progress events as SSE frames.

    The final frame is either ``{"complete": true, ...}`` or
    ``{"type": "error", ...}``. When the client disconnects the run is asked
    to stop between records and awaited so the reconciliation state is saved.
    """

    queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
    task = asyncio.create_task(runner(queue.put_nowait))
    task.add_done_callback(lambda _task: queue.put_nowait(None))
    try:
        yield _frame({"type": "start", "message": "Sync started", "timestamp": _timestamp()})
        while (event := await queue.get()) is not None:
            yield _frame(_event_payload(event))
        try:
            outcome = task.result()
        except Exception as exc:
            log.exception("Streaming sync failed")
            yield _frame({"type": "error", "error": str(exc), "timestamp": _timestamp()})
            return
        run = _run_of(outcome)
        yield _frame(
            {
                "complete": True,
                "duration": round(run.duration, 3),
                "totalItems": run.total_synced,
                "errors": run.errors,
                **_single_item_fields(outcome),
            }
        )
    finally:
        if not task.done():
            log.warning("Client disconnected, stopping the running sync")
            if cancel_event is not None:
                cancel_event.set()
            else:
                task.cancel()
            await asyncio.wait([task])


def _frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _event_payload(event: ProgressEvent) -> dict[str, Any]:
    return {
        "type": event.kind,
        "phase": event.phase,
        "message": event.message,
        "current": event.current,
        "total": event.total,
        "totalSynced": event.total_synced,
    }


def _log_progress(event: ProgressEvent) -> None:
    log.debug("[%s] %s", event.phase, event.message)


def _run_of(outcome: RunResult | SingleItemResult) -> RunResult:
    return outcome.result if isinstance(outcome, SingleItemResult) else outcome


def _single_item_fields(outcome: RunResult | SingleItemResult) -> dict[str, Any]:
    if not isinstance(outcome, SingleItemResult):
        return {}
    return {
        "documentId": outcome.document_id,
        "documentType": outcome.document_type,
        "webflowId": outcome.webflow_id,
        "published": outcome.published,
    }


def _summary(outcome: RunResult | SingleItemResult) -> dict[str, Any]:
    run = _run_of(outcome)
    return {
        "success": not run.errors,
        "message": f"Synced {run.total_synced} items",
        "totalSynced": run.total_synced,
        "duration": round(run.duration, 3),
        "cancelled": run.cancelled,
        "collections": {
            result.collection_key: {
                "created": result.created,
                "updated": result.updated,
                "unchanged": result.unchanged,
                "deleted": result.deleted,
                "skipped": result.skipped,
                "failed": result.failed,
                "published": result.published,
            }
            for result in run.collections
        },
        "errors": run.errors,
        **_single_item_fields(outcome),
    }


async def _read_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidSyncRequest(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidSyncRequest("Request body must be a JSON object")
    return payload


def _truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in {"1", "true", "yes", "on"}


def _validate(payload: dict[str, Any]) -> SyncRequest:
    try:
        return SyncRequest.model_validate(payload)
    except ValidationError as exc:
        raise InvalidSyncRequest(str(exc)) from exc
