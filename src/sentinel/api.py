"""FastAPI surface for the Sentinel pipeline.

Streams monitor runs as SSE, exposes the standalone regulatory pass as a JSON
call and as a UI part stream, and serves health and Prometheus metrics.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .batch import MonitorBatch, load_csv_file
from .cancellation import CancellationToken
from .config import Settings, get_settings
from .dependencies import SentinelServices, build_services
from .errors import CancelledRunError
from .events import (
    BufferSubscriber,
    EventChannel,
    GraphEvent,
    QueueSubscriber,
    RunLogSink,
    SSESerializer,
    UIStreamSerializer,
    now_ms,
)
from .metrics import get_metrics, get_metrics_content_type
from .models import utc_now_iso
from .regulatory.orchestrator import new_regulatory_run_id
from .runner import new_run_id
from .schemas import (
    DEFAULT_REGULATORS,
    HealthResponse,
    MonitorRequest,
    RegulatoryRequest,
    RegulatoryScrapeResponse,
    RegulatoryStateSlice,
)
from .services.store import InMemoryStore

logger = structlog.get_logger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def event_dict(event: GraphEvent) -> Dict[str, Any]:
    return {"type": event.type, **event.payload()}


async def drain(queue: QueueSubscriber) -> AsyncIterator[GraphEvent]:
    """Yield queued events until the producer closes the queue."""
    while True:
        event = await queue.queue.get()
        if event is None:
            return
        yield event


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[SentinelServices] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Optional settings (if None, loads from environment)
        services: Optional pre-built clients; built from settings when omitted

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.aclose()

    app = FastAPI(
        title=settings.API_TITLE,
        version=settings.API_VERSION,
        description="AML transaction scoring with regulatory intelligence enrichment",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.services = services

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Basic health check with configuration status of each backing service."""
        return HealthResponse(
            status="healthy",
            version=settings.API_VERSION,
            timestamp=utc_now_iso(),
            components={
                "store": "memory" if isinstance(services.store, InMemoryStore) else "supabase",
                "llm": "configured" if settings.GROQ_API_KEY else "not_configured",
                "search": "configured" if settings.TAVILY_API_KEY else "not_configured",
            },
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(content=get_metrics(), media_type=get_metrics_content_type())

    @app.post("/monitor")
    async def monitor(request: MonitorRequest) -> StreamingResponse:
        """
        Score transactions and stream every pipeline event as SSE.

        CSV mode (inline ``csv`` or ``csv_demo``) ingests rows one by one;
        otherwise ``transaction_ids`` are loaded from the store in order.
        """
        queue = QueueSubscriber()
        channel = EventChannel(new_run_id(), [queue, RunLogSink(services.store)])
        cancel = CancellationToken()
        batch = MonitorBatch(services.runner())

        async def drive() -> None:
            try:
                if request.csv_mode:
                    text = request.csv or load_csv_file(settings.MONITOR_CSV_PATH)
                    await batch.run_csv(text, channel, cancel, limit=request.limit, csv_demo=request.csv_demo)
                else:
                    await batch.run_ids(request.transaction_ids, channel, cancel)
            except CancelledRunError:
                logger.info("Monitor run cancelled", run_id=channel.run_id, status="cancelled")
            except Exception as e:
                logger.error(
                    "Monitor run failed",
                    run_id=channel.run_id,
                    status="failed",
                    details={"error": str(e)},
                )
                await channel.error(None, str(e))
            finally:
                await queue.close()

        async def event_stream():
            task = asyncio.create_task(drive())
            try:
                async for event in drain(queue):
                    yield SSESerializer.serialize(event)
            finally:
                if not task.done():
                    cancel.cancel("client disconnected")

        return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    @app.post("/regulatory/scrape", response_model=RegulatoryScrapeResponse)
    async def regulatory_scrape(request: Optional[RegulatoryRequest] = None):
        """Run one standalone regulatory pass and return the merged state slice plus its events."""
        request = request or RegulatoryRequest()
        run_id = new_regulatory_run_id()
        buffer = BufferSubscriber()
        channel = EventChannel(run_id, [buffer, RunLogSink(services.store)])

        try:
            final = await services.orchestrator().run_standalone(
                request.initial_state(), channel, regulator_codes=request.regulators
            )
        except Exception as e:
            logger.error(
                "Regulatory scrape failed",
                run_id=run_id,
                status="failed",
                details={"error": str(e)},
            )
            return JSONResponse(status_code=500, content={"error": str(e)})

        return RegulatoryScrapeResponse(
            run_id=run_id,
            regulators=request.regulators or list(DEFAULT_REGULATORS),
            state=RegulatoryStateSlice.from_state(final),
            events=[event_dict(event) for event in buffer.events],
        )

    @app.post("/regulatory/stream")
    async def regulatory_stream(request: Optional[RegulatoryRequest] = None) -> StreamingResponse:
        """Standalone regulatory pass framed as UI stream parts."""
        request = request or RegulatoryRequest()
        run_id = new_regulatory_run_id()
        queue = QueueSubscriber()
        channel = EventChannel(run_id, [queue, RunLogSink(services.store)])
        cancel = CancellationToken()
        outcome: Dict[str, Any] = {}

        async def drive() -> None:
            try:
                outcome["state"] = await services.orchestrator().run_standalone(
                    request.initial_state(), channel, cancel, request.regulators
                )
            except Exception as e:
                logger.error(
                    "Regulatory stream failed",
                    run_id=run_id,
                    status="failed",
                    details={"error": str(e)},
                )
                outcome["error"] = str(e) or "Regulatory agent failed."
            finally:
                await queue.close()

        async def part_stream():
            started = now_ms()
            yield UIStreamSerializer.part(
                UIStreamSerializer.STATUS, {"runId": run_id, "status": "running", "timestamp": started}
            )
            task = asyncio.create_task(drive())
            try:
                async for event in drain(queue):
                    yield UIStreamSerializer.part(UIStreamSerializer.EVENT, {"runId": run_id, "event": event_dict(event)})
                await task

                if "error" in outcome:
                    yield UIStreamSerializer.part(UIStreamSerializer.ERROR, {"runId": run_id, "message": outcome["error"]})
                else:
                    final = outcome["state"]
                    yield UIStreamSerializer.part(
                        UIStreamSerializer.FINAL,
                        {
                            "runId": run_id,
                            "summary": {
                                "snippets": [snippet.model_dump() for snippet in final.snippets],
                                "counts": {
                                    "candidates": len(final.candidates),
                                    "documents": len(final.documents),
                                    "proposals": len(final.proposals),
                                    "versions": len(final.versions),
                                },
                                "durationMs": now_ms() - started,
                            },
                        },
                    )
                yield UIStreamSerializer.done()
            finally:
                if not task.done():
                    cancel.cancel("client disconnected")

        return StreamingResponse(part_stream(), media_type="text/event-stream", headers=SSE_HEADERS)

    return app
