"""
Tracing for provisioning runs.

The orchestrator always creates spans through the OpenTelemetry API; they
are no-ops until ``configure_tracing`` installs an SDK provider with an
OTLP exporter.
"""

from __future__ import annotations

import logging

from opentelemetry import trace

from zkstack_wizard.timeouts import OTEL_FLUSH_TIMEOUT_MS

logger = logging.getLogger(__name__)

TRACER_NAME = "zkstack_wizard"


def configure_tracing(endpoint: str, service_name: str = "zkstack-wizard") -> bool:
    """
    Configure the global TracerProvider with an OTLP gRPC exporter.

    Args:
        endpoint: OTLP endpoint (e.g., localhost:4317)
        service_name: Value of the service.name resource attribute

    Returns:
        True if configuration succeeded, False otherwise
    """
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({
            "service.name": service_name,
            "service.namespace": "zkstack",
        })

        tracer_provider = TracerProvider(resource=resource)
        span_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(tracer_provider)
        return True

    except Exception as e:
        logger.warning(f"Failed to configure tracing export to {endpoint}: {e}")
        return False


def flush_tracing() -> None:
    """Flush and shutdown the tracer provider so all spans are exported."""
    tracer_provider = trace.get_tracer_provider()
    if hasattr(tracer_provider, "force_flush"):
        tracer_provider.force_flush(timeout_millis=OTEL_FLUSH_TIMEOUT_MS)
    if hasattr(tracer_provider, "shutdown"):
        tracer_provider.shutdown()


def get_tracer(tracer_provider=None) -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME, tracer_provider=tracer_provider)
