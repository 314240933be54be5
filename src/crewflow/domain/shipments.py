"""
Shipment aggregate.

One shipment per (order, supplying business). Carrier shipments go
``created -> rates_fetched -> rate_selected -> label_purchased`` and are
then driven by tracking webhooks; business-handled shipments stay
``created`` with a flat ``shipment_cost``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid5

from pydantic import BaseModel, Field

from crewflow.actors import Actor
from crewflow.aggregates.base import DeclarativeAggregate
from crewflow.events.base import DomainEvent
from crewflow.events.registry import register_event
from crewflow.exceptions import IllegalTransitionError, NotFoundError, ValidationError
from crewflow.handlers.decorators import handles
from crewflow.integrations.carriers import Address, Parcel
from crewflow.types import ShipmentStatus

# Shipment ids are derived from (order, business) so two concurrent creators
# collide on the same stream.
SHIPMENT_NAMESPACE = UUID("6f1d2a9c-3b7e-4c1a-9f0e-5d8b2c4a7e61")


def shipment_id_for(order_id: UUID, business_id: UUID) -> UUID:
    return uuid5(SHIPMENT_NAMESPACE, f"{order_id}:{business_id}")


class ShipmentRate(BaseModel):
    rate_id: str
    carrier: str
    service: str
    rate: Decimal
    currency: str = "USD"
    estimated_days: int | None = None
    is_selected: bool = False


class ShipmentState(BaseModel):
    shipment_id: UUID
    order_id: UUID
    business_id: UUID
    item_ids: list[UUID] = Field(default_factory=list)
    status: ShipmentStatus = ShipmentStatus.CREATED
    business_handled: bool = False
    shipment_cost: Decimal | None = None
    from_address: Address
    to_address: Address
    parcel: Parcel
    carrier_shipment_id: str | None = None
    rates: list[ShipmentRate] = Field(default_factory=list)
    tracking_number: str | None = None
    label_url: str | None = None
    carrier: str | None = None
    last_webhook_data: dict[str, Any] | None = None
    created_at: datetime | None = None

    @property
    def selected_rate(self) -> ShipmentRate | None:
        for rate in self.rates:
            if rate.is_selected:
                return rate
        return None

    @property
    def is_invoice_ready(self) -> bool:
        """Shipping cost is known: business-handled, or a label was bought."""
        if self.business_handled:
            return True
        return self.status not in (
            ShipmentStatus.CREATED,
            ShipmentStatus.RATES_FETCHED,
            ShipmentStatus.RATE_SELECTED,
        )


@register_event
class ShipmentCreated(DomainEvent):
    aggregate_type: str = "Shipment"
    order_id: UUID
    business_id: UUID
    item_ids: list[UUID]
    business_handled: bool
    shipment_cost: Decimal | None = None
    from_address: Address
    to_address: Address
    parcel: Parcel


@register_event
class ShipmentItemsAdded(DomainEvent):
    aggregate_type: str = "Shipment"
    item_ids: list[UUID]
    parcel: Parcel


@register_event
class ShipmentRatesFetched(DomainEvent):
    aggregate_type: str = "Shipment"
    carrier_shipment_id: str
    rates: list[ShipmentRate]


@register_event
class ShipmentRateSelected(DomainEvent):
    aggregate_type: str = "Shipment"
    rate_id: str


@register_event
class ShipmentLabelPurchased(DomainEvent):
    aggregate_type: str = "Shipment"
    tracking_number: str
    label_url: str
    carrier: str


@register_event
class ShipmentTrackingUpdated(DomainEvent):
    aggregate_type: str = "Shipment"
    from_status: ShipmentStatus
    to_status: ShipmentStatus
    carrier_status: str
    webhook_data: dict[str, Any] = Field(default_factory=dict)


class ShipmentAggregate(DeclarativeAggregate[ShipmentState]):
    """Event-sourced shipment."""

    aggregate_type = "Shipment"

    def _get_initial_state(self) -> ShipmentState:
        raise NotImplementedError("shipments are created by create()")

    def create(
        self,
        *,
        order_id: UUID,
        business_id: UUID,
        item_ids: list[UUID],
        from_address: Address,
        to_address: Address,
        parcel: Parcel,
        actor: Actor,
        shipment_cost: Decimal | None = None,
    ) -> None:
        if self._state is not None:
            raise ValidationError(f"shipment {self._aggregate_id} already exists")
        if not item_ids:
            raise ValidationError("a shipment needs at least one item", field="item_ids")
        self._raise_event(
            ShipmentCreated(
                **self._event_fields(actor.actor_id),
                order_id=order_id,
                business_id=business_id,
                item_ids=item_ids,
                business_handled=shipment_cost is not None,
                shipment_cost=shipment_cost,
                from_address=from_address,
                to_address=to_address,
                parcel=parcel,
            )
        )

    def add_items(self, item_ids: list[UUID], parcel: Parcel, actor: Actor) -> None:
        """Attach newly confirmed items. Rates are refetched afterwards."""
        state = self._require_state()
        new_ids = [item_id for item_id in item_ids if item_id not in state.item_ids]
        if not new_ids:
            return
        if state.status not in (
            ShipmentStatus.CREATED,
            ShipmentStatus.RATES_FETCHED,
            ShipmentStatus.RATE_SELECTED,
        ):
            raise IllegalTransitionError(
                "shipment", state.status.value, "items_added", reason="label already purchased"
            )
        self._raise_event(
            ShipmentItemsAdded(**self._event_fields(actor.actor_id), item_ids=new_ids, parcel=parcel)
        )

    def record_rates(self, carrier_shipment_id: str, rates: list[ShipmentRate], actor: Actor) -> None:
        state = self._require_state()
        if state.business_handled:
            raise IllegalTransitionError(
                "shipment", state.status.value, ShipmentStatus.RATES_FETCHED.value,
                reason="shipment is handled by the business",
            )
        if state.status not in (
            ShipmentStatus.CREATED,
            ShipmentStatus.RATES_FETCHED,
            ShipmentStatus.RATE_SELECTED,
        ):
            raise IllegalTransitionError(
                "shipment", state.status.value, ShipmentStatus.RATES_FETCHED.value
            )
        self._raise_event(
            ShipmentRatesFetched(
                **self._event_fields(actor.actor_id),
                carrier_shipment_id=carrier_shipment_id,
                rates=rates,
            )
        )

    def select_rate(self, rate_id: str, actor: Actor) -> None:
        state = self._require_state()
        if state.status not in (ShipmentStatus.RATES_FETCHED, ShipmentStatus.RATE_SELECTED):
            raise IllegalTransitionError(
                "shipment", state.status.value, ShipmentStatus.RATE_SELECTED.value
            )
        if not any(rate.rate_id == rate_id for rate in state.rates):
            raise NotFoundError("shipment rate", rate_id)
        self._raise_event(ShipmentRateSelected(**self._event_fields(actor.actor_id), rate_id=rate_id))

    def record_label(self, tracking_number: str, label_url: str, carrier: str, actor: Actor) -> None:
        state = self._require_state()
        if state.status != ShipmentStatus.RATE_SELECTED:
            raise IllegalTransitionError(
                "shipment", state.status.value, ShipmentStatus.LABEL_PURCHASED.value,
                reason="a rate must be selected first",
            )
        self._raise_event(
            ShipmentLabelPurchased(
                **self._event_fields(actor.actor_id),
                tracking_number=tracking_number,
                label_url=label_url,
                carrier=carrier,
            )
        )

    def apply_tracking(
        self,
        to_status: ShipmentStatus,
        carrier_status: str,
        webhook_data: dict[str, Any],
        actor: Actor,
    ) -> bool:
        """Record a tracking update. Returns False when the status is unchanged."""
        state = self._require_state()
        if state.status == to_status:
            return False
        self._raise_event(
            ShipmentTrackingUpdated(
                **self._event_fields(actor.actor_id),
                from_status=state.status,
                to_status=to_status,
                carrier_status=carrier_status,
                webhook_data=webhook_data,
            )
        )
        return True

    # -- event handlers ------------------------------------------------------

    @handles(ShipmentCreated)
    def _on_created(self, event: ShipmentCreated) -> None:
        self._state = ShipmentState(
            shipment_id=event.aggregate_id,
            order_id=event.order_id,
            business_id=event.business_id,
            item_ids=list(event.item_ids),
            business_handled=event.business_handled,
            shipment_cost=event.shipment_cost,
            from_address=event.from_address,
            to_address=event.to_address,
            parcel=event.parcel,
            created_at=event.occurred_at,
        )

    @handles(ShipmentItemsAdded)
    def _on_items_added(self, event: ShipmentItemsAdded) -> None:
        state = self._require_state()
        self._state = state.model_copy(
            update={
                "item_ids": [*state.item_ids, *event.item_ids],
                "parcel": event.parcel,
                "status": ShipmentStatus.CREATED,
                "rates": [],
                "carrier_shipment_id": None,
            }
        )

    @handles(ShipmentRatesFetched)
    def _on_rates_fetched(self, event: ShipmentRatesFetched) -> None:
        self._state = self._require_state().model_copy(
            update={
                "status": ShipmentStatus.RATES_FETCHED,
                "carrier_shipment_id": event.carrier_shipment_id,
                "rates": list(event.rates),
            }
        )

    @handles(ShipmentRateSelected)
    def _on_rate_selected(self, event: ShipmentRateSelected) -> None:
        state = self._require_state()
        rates = [
            rate.model_copy(update={"is_selected": rate.rate_id == event.rate_id})
            for rate in state.rates
        ]
        self._state = state.model_copy(
            update={"status": ShipmentStatus.RATE_SELECTED, "rates": rates}
        )

    @handles(ShipmentLabelPurchased)
    def _on_label_purchased(self, event: ShipmentLabelPurchased) -> None:
        self._state = self._require_state().model_copy(
            update={
                "status": ShipmentStatus.LABEL_PURCHASED,
                "tracking_number": event.tracking_number,
                "label_url": event.label_url,
                "carrier": event.carrier,
            }
        )

    @handles(ShipmentTrackingUpdated)
    def _on_tracking_updated(self, event: ShipmentTrackingUpdated) -> None:
        self._state = self._require_state().model_copy(
            update={"status": event.to_status, "last_webhook_data": event.webhook_data}
        )


__all__ = [
    "SHIPMENT_NAMESPACE",
    "ShipmentAggregate",
    "ShipmentCreated",
    "ShipmentItemsAdded",
    "ShipmentLabelPurchased",
    "ShipmentRate",
    "ShipmentRateSelected",
    "ShipmentRatesFetched",
    "ShipmentState",
    "ShipmentTrackingUpdated",
    "shipment_id_for",
]
