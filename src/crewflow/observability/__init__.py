"""
Observability utilities for crewflow.

OpenTelemetry is an optional dependency; without it every component gets a
NullTracer and tracing costs nothing.
"""

from crewflow.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_ACTOR_KIND,
    ATTR_AGGREGATE_ID,
    ATTR_AGGREGATE_TYPE,
    ATTR_BOOKING_ID,
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_EFFECT_COUNT,
    ATTR_EVENT_COUNT,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_EXPECTED_VERSION,
    ATTR_FROM_VERSION,
    ATTR_GATEWAY_INVOICE_ID,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_INVOICE_ID,
    ATTR_MESSAGING_DESTINATION,
    ATTR_MESSAGING_SYSTEM,
    ATTR_ORDER_ID,
    ATTR_REQUESTED_STATUS,
    ATTR_SHIPMENT_ID,
    ATTR_VERSION,
    ATTR_WEBHOOK_EVENT_TYPE,
)
from crewflow.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from crewflow.observability.tracing import OTEL_AVAILABLE, get_tracer, should_trace

__all__ = [
    "ATTR_ACTOR_ID",
    "ATTR_ACTOR_KIND",
    "ATTR_AGGREGATE_ID",
    "ATTR_AGGREGATE_TYPE",
    "ATTR_BOOKING_ID",
    "ATTR_DB_NAME",
    "ATTR_DB_SYSTEM",
    "ATTR_EFFECT_COUNT",
    "ATTR_EVENT_COUNT",
    "ATTR_EVENT_ID",
    "ATTR_EVENT_TYPE",
    "ATTR_EXPECTED_VERSION",
    "ATTR_FROM_VERSION",
    "ATTR_GATEWAY_INVOICE_ID",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_SUCCESS",
    "ATTR_INVOICE_ID",
    "ATTR_MESSAGING_DESTINATION",
    "ATTR_MESSAGING_SYSTEM",
    "ATTR_ORDER_ID",
    "ATTR_REQUESTED_STATUS",
    "ATTR_SHIPMENT_ID",
    "ATTR_VERSION",
    "ATTR_WEBHOOK_EVENT_TYPE",
    "MockTracer",
    "NullTracer",
    "OTEL_AVAILABLE",
    "OpenTelemetryTracer",
    "SpanKindEnum",
    "Tracer",
    "create_tracer",
    "get_tracer",
    "should_trace",
]
