"""OpenTelemetry setup for orchestration spans.

`init_tracing` installs a tracer provider with a batch OTLP/HTTP exporter when
`OTEL_EXPORTER_OTLP_ENDPOINT` is configured. Without an endpoint nothing is
installed and `get_tracer` hands out the API's no-op tracer, so instrumented
code runs unchanged in tests and local use.

The initialization is idempotent and will only run once per process.
"""
from __future__ import annotations

import logging
from importlib import metadata

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import Settings

logger = logging.getLogger(__name__)

__all__ = ["init_tracing", "get_tracer", "shutdown_tracing"]

_initialized = False
_provider: TracerProvider | None = None


def _package_version() -> str:
    try:
        return metadata.version("n8n-prompt-chains")
    except metadata.PackageNotFoundError:
        return "0.0.0"


def init_tracing(settings: Settings) -> bool:
    """Install the OTLP tracer provider once; return True when tracing is active."""
    global _initialized, _provider
    if _initialized:
        return _provider is not None
    _initialized = True
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        logger.debug("No OTLP endpoint configured; tracing disabled")
        return False
    endpoint = settings.OTEL_EXPORTER_OTLP_ENDPOINT.rstrip("/")
    if not endpoint.endswith("/v1/traces"):
        endpoint = endpoint + "/v1/traces"
    exporter = OTLPSpanExporter(endpoint=endpoint, timeout=settings.OTEL_EXPORTER_OTLP_TIMEOUT)
    resource = Resource.create(
        {
            "service.name": settings.OTEL_SERVICE_NAME,
            "service.version": _package_version(),
            "telemetry.sdk.language": "python",
        }
    )
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info("Initialized OTLP exporter for endpoint %s", endpoint)
    return True


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def shutdown_tracing() -> None:
    """Flush pending spans; safe to call when tracing never started."""
    if _provider is None:
        return
    try:
        _provider.force_flush()
        _provider.shutdown()
    except Exception as e:  # noqa: BLE001 exporter shutdown must not mask the command result
        logger.warning("Error shutting down tracer provider: %s", e)
