"""
Unit tests for ShipmentOrchestrator and the tracking webhook.

Tests cover:
- Carrier shipments: rate fetch, rate selection, label purchase
- One shipment per (order, business), extended by later confirmations
- Invoice finalization once the label cost is known
- Tracking updates moving shipments and order items, and their replay
"""

from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio

from crewflow.catalog import Business, Product
from crewflow.domain.shipments import shipment_id_for
from crewflow.exceptions import (
    IllegalTransitionError,
    NotFoundError,
    SignatureVerificationError,
    UnauthorizedError,
)
from crewflow.testing import EffectAssertions, MarketplaceHarness
from crewflow.types import NotificationPriority, OrderItemStatus, ShipmentStatus
from crewflow.workflows.orders import OrderLine
from crewflow.workflows.shipments import build_parcel
from tests.factories import order_item

ADDRESS = {"name": "Casey Customer", "street1": "2 Site Road", "city": "Denver", "state": "CO", "zip": "80202"}


@pytest.fixture
def carrier_business(harness: MarketplaceHarness) -> Business:
    """A business whose orders ship on platform-bought labels."""
    return harness.add_business("Crate Co")


@pytest_asyncio.fixture
async def crate(harness: MarketplaceHarness, carrier_business: Business) -> Product:
    return await harness.add_product(carrier_business, name="Tool Crate", price=Decimal("40.00"), stock=10)


@pytest_asyncio.fixture
async def confirmed(harness, customer, carrier_business, crate):
    """An order whose single crate is confirmed, with rates fetched."""
    placed = await harness.orders.create_order(
        customer, [OrderLine(product_id=crate.product_id, quantity=1)], ADDRESS
    )
    await harness.orders.confirm_order("token-1")
    return placed.value.order_id, shipment_id_for(placed.value.order_id, carrier_business.business_id)


async def labelled(harness: MarketplaceHarness, shipment_id, actor) -> None:
    await harness.shipments.select_rate(shipment_id, "rate_ground", actor)
    await harness.shipments.purchase_label(shipment_id, actor)


class TestCarrierShipment:
    """Tests for rates and labels."""

    @pytest.mark.asyncio
    async def test_confirmation_fetches_rates(self, harness, confirmed):
        order_id, shipment_id = confirmed

        shipment = (await harness.shipments.load(shipment_id)).state

        assert shipment.status == ShipmentStatus.RATES_FETCHED
        assert shipment.business_handled is False
        assert [rate.rate_id for rate in shipment.rates] == ["rate_ground", "rate_express"]
        assert shipment.order_id == order_id

    @pytest.mark.asyncio
    async def test_invoice_waits_for_label(self, harness, confirmed):
        order_id, _ = confirmed

        order = await harness.orders.get_order(order_id)
        invoice = (await harness.invoices.load(order.invoice_id)).state

        assert invoice.finalized is False
        assert invoice.amount_due_minor == 4000

    @pytest.mark.asyncio
    async def test_purchase_label(self, harness, carrier_business, confirmed):
        order_id, shipment_id = confirmed
        actor = carrier_business.as_actor()
        await harness.shipments.select_rate(shipment_id, "rate_ground", actor)

        result = await harness.shipments.purchase_label(shipment_id, actor)

        assert result.value.status == ShipmentStatus.LABEL_PURCHASED
        assert result.value.tracking_number == "TRK000001"
        order = await harness.orders.get_order(order_id)
        assert order.items[0].status == OrderItemStatus.PROCESSING
        EffectAssertions(result.effects).assert_email_sent(
            subject="Shipping label ready", to=carrier_business.email
        )

    @pytest.mark.asyncio
    async def test_label_finalizes_invoice_with_platform_shipping(self, harness, carrier_business, confirmed):
        order_id, shipment_id = confirmed

        await labelled(harness, shipment_id, carrier_business.as_actor())

        order = await harness.orders.get_order(order_id)
        invoice = (await harness.invoices.load(order.invoice_id)).state
        assert invoice.finalized is True
        assert invoice.amount_due_minor == 4000 + 850 + 400
        assert order.invoice_url is not None

    @pytest.mark.asyncio
    async def test_label_needs_selected_rate(self, harness, carrier_business, confirmed):
        _, shipment_id = confirmed

        with pytest.raises(IllegalTransitionError):
            await harness.shipments.purchase_label(shipment_id, carrier_business.as_actor())

    @pytest.mark.asyncio
    async def test_unknown_rate(self, harness, carrier_business, confirmed):
        _, shipment_id = confirmed

        with pytest.raises(NotFoundError):
            await harness.shipments.select_rate(shipment_id, "rate_teleport", carrier_business.as_actor())

    @pytest.mark.asyncio
    async def test_other_business_cannot_select_rate(self, harness, confirmed):
        _, shipment_id = confirmed
        other = harness.add_business("Bolt Depot")

        with pytest.raises(UnauthorizedError):
            await harness.shipments.select_rate(shipment_id, "rate_ground", other.as_actor())

    @pytest.mark.asyncio
    async def test_carrier_failure_leaves_shipment_created(self, harness, customer, carrier_business, crate):
        harness.carrier.fail_next("create_shipment")
        placed = await harness.orders.create_order(
            customer, [OrderLine(product_id=crate.product_id, quantity=1)], ADDRESS
        )

        result = await harness.orders.confirm_order("token-1")

        assert result.value.status == OrderItemStatus.CONFIRMED
        shipment_id = shipment_id_for(placed.value.order_id, carrier_business.business_id)
        assert (await harness.shipments.load(shipment_id)).state.status == ShipmentStatus.CREATED

        state = await harness.shipments.fetch_rates(shipment_id, carrier_business.as_actor())
        assert state.status == ShipmentStatus.RATES_FETCHED


class TestShipmentPerBusiness:
    @pytest.mark.asyncio
    async def test_later_confirmation_extends_shipment(self, harness, customer, carrier_business, crate):
        """Two items from one business share a shipment; rates are re-fetched for the bigger parcel."""
        straps = await harness.add_product(carrier_business, name="Ratchet Straps", price=Decimal("15.00"))
        placed = await harness.orders.create_order(
            customer,
            [OrderLine(product_id=crate.product_id, quantity=1), OrderLine(product_id=straps.product_id, quantity=2)],
            ADDRESS,
        )

        await harness.orders.confirm_order("token-1")
        await harness.orders.confirm_order("token-2")

        shipments = await harness.shipments.shipments_for_order(placed.value.order_id)
        assert len(shipments) == 1
        assert len(shipments[0].item_ids) == 2
        assert shipments[0].status == ShipmentStatus.RATES_FETCHED
        assert len(harness.carrier.shipments) == 2

    @pytest.mark.asyncio
    async def test_labelled_shipment_takes_no_new_items(self, harness, customer, carrier_business, crate):
        straps = await harness.add_product(carrier_business, name="Ratchet Straps", price=Decimal("15.00"))
        placed = await harness.orders.create_order(
            customer,
            [OrderLine(product_id=crate.product_id, quantity=1), OrderLine(product_id=straps.product_id, quantity=1)],
            ADDRESS,
        )
        await harness.orders.confirm_order("token-1")
        shipment_id = shipment_id_for(placed.value.order_id, carrier_business.business_id)
        await labelled(harness, shipment_id, carrier_business.as_actor())

        await harness.orders.confirm_order("token-2")

        shipment = (await harness.shipments.load(shipment_id)).state
        assert len(shipment.item_ids) == 1
        assert shipment.status == ShipmentStatus.LABEL_PURCHASED


class TestTracking:
    """Tests for tracking webhooks."""

    @pytest.mark.asyncio
    async def test_in_transit_ships_items(self, harness, customer, carrier_business, confirmed):
        order_id, shipment_id = confirmed
        await labelled(harness, shipment_id, carrier_business.as_actor())

        result = await harness.track("TRK000001", "in_transit")

        assert result.value.status == ShipmentStatus.SHIPPED
        order = await harness.orders.get_order(order_id)
        assert order.status == OrderItemStatus.SHIPPED
        effects = EffectAssertions(result.effects)
        effects.assert_notification_sent(title="Order Shipped", recipient_id=customer.user_id)
        effects.assert_email_sent(subject="Order Shipped")

    @pytest.mark.asyncio
    async def test_replayed_update_is_noop(self, harness, carrier_business, confirmed):
        _, shipment_id = confirmed
        await labelled(harness, shipment_id, carrier_business.as_actor())
        await harness.track("TRK000001", "in_transit")
        events_before = harness.event_store.event_count

        result = await harness.track("TRK000001", "IN_TRANSIT ")

        EffectAssertions(result.effects).assert_no_effects()
        assert harness.event_store.event_count == events_before

    @pytest.mark.asyncio
    async def test_delivered(self, harness, carrier_business, confirmed):
        order_id, shipment_id = confirmed
        await labelled(harness, shipment_id, carrier_business.as_actor())
        await harness.track("TRK000001", "in_transit")

        result = await harness.track("TRK000001", "delivered")

        notice = EffectAssertions(result.effects).assert_notification_sent(title="Order Delivered")
        assert notice.priority == NotificationPriority.HIGH
        order = await harness.orders.get_order(order_id)
        assert order.status == OrderItemStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_failure_cancels_items_and_restores_stock(self, harness, carrier_business, crate, confirmed):
        order_id, shipment_id = confirmed
        await labelled(harness, shipment_id, carrier_business.as_actor())
        assert await harness.stock_of(crate.product_id) == 9

        result = await harness.track("TRK000001", "failure")

        assert result.value.status == ShipmentStatus.FAILED
        order = await harness.orders.get_order(order_id)
        assert order.status == OrderItemStatus.CANCELLED
        assert order.refunds == []
        assert await harness.stock_of(crate.product_id) == 10
        notice = EffectAssertions(result.effects).assert_notification_sent(title="Delivery Failed")
        assert notice.priority == NotificationPriority.URGENT

    @pytest.mark.asyncio
    async def test_unknown_tracking_code_is_ignored(self, harness):
        result = await harness.track("TRK999999", "delivered")

        assert result.value is None
        assert result.effects == []

    @pytest.mark.asyncio
    async def test_untracked_status_is_ignored(self, harness, carrier_business, confirmed):
        _, shipment_id = confirmed
        await labelled(harness, shipment_id, carrier_business.as_actor())

        result = await harness.track("TRK000001", "awaiting_pickup")

        assert result.value is None
        assert (await harness.shipments.load(shipment_id)).state.status == ShipmentStatus.LABEL_PURCHASED

    @pytest.mark.asyncio
    async def test_bad_signature(self, harness):
        body, _ = harness.tracking_event("TRK000001", "delivered")

        with pytest.raises(SignatureVerificationError):
            await harness.tracking_webhooks.handle(body, "hmac-sha256-hex=deadbeef")


class TestBuildParcel:
    def test_largest_dimensions_and_summed_weight(self, business):
        small = Product(
            product_id=uuid4(), name="Gloves", business_id=business.business_id, price=Decimal("5"),
            weight=Decimal("4"), length=Decimal("6"), width=Decimal("4"), height=Decimal("1"),
        )
        tall = Product(
            product_id=uuid4(), name="Cone", business_id=business.business_id, price=Decimal("9"),
            weight=Decimal("20"), length=Decimal("12"), width=Decimal("3"), height=Decimal("18"),
        )

        parcel = build_parcel(
            [(order_item(business.business_id, quantity=3), small), (order_item(business.business_id), tall)]
        )

        assert parcel.length == Decimal("12")
        assert parcel.width == Decimal("4")
        assert parcel.height == Decimal("18")
        assert parcel.weight == Decimal("32")
