import logging

from opentelemetry import trace

logger = logging.getLogger(__name__)

_tracing_configured = False


def setup_tracing() -> bool:
    """
    Installs an SDK tracer provider exporting spans over OTLP/HTTP.

    Safe to call more than once; only the first call installs the provider.

    Returns:
        True if tracing is (now) configured.
    """
    global _tracing_configured
    if _tracing_configured:
        return True

    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    trace_provider = TracerProvider()
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter()))
    trace.set_tracer_provider(trace_provider)
    _tracing_configured = True

    logger.info("OpenTelemetry tracing initialized with OTLPSpanExporter.")
    return True


def get_tracer(name: str) -> trace.Tracer:
    """
    Returns a tracer with the specified name.

    Without setup_tracing() this is the API's no-op tracer.
    """
    return trace.get_tracer(name)
