"""
OpenTelemetry tracing for installer steps.

Each step runs inside an ``install.step`` span. Without a configured
provider the OTel API hands out non-recording spans, so tracing costs
nothing unless ``configure_tracing()`` installed an OTLP exporter.

Usage::

    from commonsinstall.telemetry import configure_tracing, get_tracer

    configure_tracing("localhost:4317")
    with step_span(get_tracer(), step, "mysite") as span:
        ...
"""

from __future__ import annotations

import contextlib
from typing import Dict, Generator, Optional, Union

import click
from opentelemetry import trace

from commonsinstall import __version__
from commonsinstall.models import Step

__all__ = [
    "TRACER_NAME",
    "SPAN_NAME",
    "get_tracer",
    "step_span",
    "add_span_event",
    "configure_tracing",
    "flush_tracing",
]

TRACER_NAME = "commonsinstall"
SPAN_NAME = "install.step"

AttributeValue = Union[str, int, float, bool]


def get_tracer(provider: Optional[trace.TracerProvider] = None) -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME, __version__, tracer_provider=provider)


@contextlib.contextmanager
def step_span(tracer: trace.Tracer, step: Step, instance: str) -> Generator[trace.Span, None, None]:
    """Open the span wrapping one step's probe and action."""
    attributes: Dict[str, AttributeValue] = {
        "install.step.id": step.id,
        "install.step.label": step.label,
        "install.step.optional": step.optional,
        "install.instance": instance,
    }
    with tracer.start_as_current_span(SPAN_NAME, attributes=attributes) as span:
        yield span


def add_span_event(name: str, attributes: Dict[str, AttributeValue]) -> None:
    """Add an event to the current span. No-op when it is not recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name=name, attributes=attributes)


def configure_tracing(endpoint: str) -> bool:
    """
    Configure the global TracerProvider with an OTLP gRPC exporter.

    Args:
        endpoint: OTLP endpoint (e.g., localhost:4317)

    Returns:
        True if configuration succeeded, False otherwise
    """
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource.create({
            "service.name": "commons-install",
            "service.version": __version__,
        })
        tracer_provider = TracerProvider(resource=resource)
        span_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(tracer_provider)
        return True

    except Exception as e:
        click.echo(f"Warning: Failed to configure OTel: {e}", err=True)
        return False


def flush_tracing() -> None:
    """Flush and shut down the tracer provider so all spans are exported."""
    tracer_provider = trace.get_tracer_provider()
    if hasattr(tracer_provider, "force_flush"):
        tracer_provider.force_flush(timeout_millis=10000)
    if hasattr(tracer_provider, "shutdown"):
        tracer_provider.shutdown()
