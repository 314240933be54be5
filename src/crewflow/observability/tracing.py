"""
OpenTelemetry availability probe.

OpenTelemetry is optional. This module is the single place that tries to
import it; everything else checks ``OTEL_AVAILABLE``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opentelemetry.trace import Tracer

try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


def get_tracer(name: str) -> Tracer | None:
    """Return an OpenTelemetry tracer, or None when OpenTelemetry is absent."""
    if OTEL_AVAILABLE and trace is not None:
        return trace.get_tracer(name)
    return None


def should_trace(enable_tracing: bool) -> bool:
    """True when tracing is requested and OpenTelemetry is importable."""
    return enable_tracing and OTEL_AVAILABLE


__all__ = ["OTEL_AVAILABLE", "get_tracer", "should_trace"]
