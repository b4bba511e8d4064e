import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from ai_proxy.proxy import Forwarder, register_error_handlers
from ai_proxy.proxy.route import router
from ai_proxy.routing import RouteTable, load_route_table
from ai_proxy.vars import (
    HOST,
    IDLE_TIMEOUT,
    LOG_LEVEL,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    PORT,
    SERVICE_NAME,
    VERSION,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Wrapper exporter that filters out noisy ASGI body spans from streaming responses.
    A long event stream would otherwise produce one span per relayed chunk.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        filtered_spans = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if filtered_spans:
            return self.exporter.export(filtered_spans)
        return SpanExportResult.SUCCESS

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=((OTLP_HEADERS).split(",") if OTLP_HEADERS else None),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME, "version": VERSION})


def create_app(
    route_table: Optional[RouteTable] = None,
    forwarder: Optional[Forwarder] = None,
    instrument: bool = True,
) -> FastAPI:
    """
    Build the proxy application.

    The route table is validated here, before the server accepts anything;
    an invalid table raises ``RouteConfigurationError``. A forwarder that is
    not injected is created on startup and closed on shutdown.
    """
    table = route_table if route_table is not None else load_route_table()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.forwarder is None
        if owned:
            app.state.forwarder = Forwarder()
        logger.info(
            f"Proxying {len(table)} prefixes: "
            + ", ".join(f"{prefix} -> {origin}" for prefix, origin in table.items())
        )
        try:
            yield
        finally:
            if owned:
                await app.state.forwarder.aclose()
                app.state.forwarder = None

    app = FastAPI(
        title="AI API Proxy",
        version=VERSION,
        lifespan=lifespan,
        redirect_slashes=False,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.route_table = table
    app.state.forwarder = forwarder

    if instrument:
        Instrumentator().instrument(app).expose(app)
        FastAPIInstrumentor.instrument_app(app)

    register_error_handlers(app)
    app.include_router(router)
    return app


def parse_args(argv: Optional[Sequence[str]] = None):
    parser = argparse.ArgumentParser(description="AI API reverse proxy")
    parser.add_argument(
        "port", nargs="?", type=int, default=PORT, help=f"Listening port (default: {PORT})"
    )
    parser.add_argument("--host", default=HOST, help=f"Bind address (default: {HOST})")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    uvicorn.run(
        create_app(),
        host=args.host,
        port=args.port,
        log_level=LOG_LEVEL,
        # No response write timeout exists in uvicorn; streams may run forever.
        timeout_keep_alive=int(IDLE_TIMEOUT),
    )


if __name__ == "__main__":
    main()
