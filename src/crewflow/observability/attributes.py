"""
Standard span attribute names.

Keeping the keys in one place makes traces from every component queryable
with the same attribute names.
"""

# =============================================================================
# Aggregate / event store attributes
# =============================================================================

ATTR_AGGREGATE_ID = "crewflow.aggregate.id"

ATTR_AGGREGATE_TYPE = "crewflow.aggregate.type"

ATTR_EVENT_ID = "crewflow.event.id"

ATTR_EVENT_TYPE = "crewflow.event.type"

ATTR_EVENT_COUNT = "crewflow.event.count"

ATTR_VERSION = "crewflow.version"

ATTR_EXPECTED_VERSION = "crewflow.expected_version"

ATTR_FROM_VERSION = "crewflow.from_version"

ATTR_HANDLER_NAME = "crewflow.handler.name"

ATTR_HANDLER_COUNT = "crewflow.handler.count"

ATTR_HANDLER_SUCCESS = "crewflow.handler.success"

# =============================================================================
# Workflow attributes
# =============================================================================

ATTR_ACTOR_ID = "crewflow.actor.id"

ATTR_ACTOR_KIND = "crewflow.actor.kind"

ATTR_ORDER_ID = "crewflow.order.id"

ATTR_BOOKING_ID = "crewflow.booking.id"

ATTR_SHIPMENT_ID = "crewflow.shipment.id"

ATTR_INVOICE_ID = "crewflow.invoice.id"

ATTR_GATEWAY_INVOICE_ID = "crewflow.invoice.gateway_id"

ATTR_REQUESTED_STATUS = "crewflow.status.requested"

ATTR_WEBHOOK_EVENT_TYPE = "crewflow.webhook.event_type"

ATTR_EFFECT_COUNT = "crewflow.effect.count"

# =============================================================================
# Database / messaging attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"

ATTR_DB_NAME = "db.name"

ATTR_MESSAGING_SYSTEM = "messaging.system"

ATTR_MESSAGING_DESTINATION = "messaging.destination"
