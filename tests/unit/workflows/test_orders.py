"""
Unit tests for OrderWorkflow.

Tests cover:
- Order creation: pricing, platform fee, currency conversion, effects
- Token confirmation and decline, including reuse and expiry
- Role-scoped status updates
- Invoice creation and the finalize gate across businesses
- Cancellation: stock restore, invoice void, refunds and payouts
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from crewflow.actors import BusinessKind, Customer
from crewflow.catalog import Product
from crewflow.domain.shipments import shipment_id_for
from crewflow.exceptions import (
    AlreadyProcessedError,
    IllegalTransitionError,
    InvalidTokenError,
    UnauthorizedError,
    ValidationError,
)
from crewflow.testing import EffectAssertions, MarketplaceHarness
from crewflow.types import InvoiceStatus, NotificationPriority, OrderItemStatus, PaymentStatus
from crewflow.workflows.orders import OrderLine, business_share
from tests.factories import order_item, placed_order

ADDRESS = {"name": "Casey Customer", "street1": "2 Site Road", "city": "Denver", "state": "CO", "zip": "80202"}


async def place(harness: MarketplaceHarness, customer: Customer, *lines: tuple[Product, int]):
    return await harness.orders.create_order(
        customer,
        [OrderLine(product_id=product.product_id, quantity=quantity) for product, quantity in lines],
        ADDRESS,
    )


async def paid_order(harness: MarketplaceHarness, customer: Customer, product: Product):
    """Place, confirm and pay a one-item order."""
    result = await place(harness, customer, (product, 1))
    await harness.orders.confirm_order("token-1")
    order = await harness.orders.get_order(result.value.order_id)
    await harness.pay_invoice(order.gateway_invoice_id)
    return await harness.orders.get_order(order.order_id)


class TestCreateOrder:
    """Tests for create_order."""

    @pytest.mark.asyncio
    async def test_prices_items_and_adds_platform_fee(self, harness, customer, product):
        """Two $40 boots come to $80 plus a 10% fee."""
        result = await place(harness, customer, (product, 2))
        order = result.value

        assert order.subtotal == Decimal("80.00")
        assert order.platform_fee == Decimal("8.00")
        assert order.total_amount == Decimal("88.00")
        assert order.status == OrderItemStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert order.items[0].quantity == 2
        assert order.items[0].confirmation_token == "token-1"

    @pytest.mark.asyncio
    async def test_converts_foreign_prices_to_settlement_currency(self, harness, customer, business):
        product = await harness.add_product(business, name="Ear Defenders", price=Decimal("92.00"), currency="EUR")

        result = await place(harness, customer, (product, 1))
        item = result.value.items[0]

        assert item.original_total == Decimal("92.00")
        assert item.original_currency == "EUR"
        assert item.converted_total == Decimal("100.00")
        assert result.value.total_amount == Decimal("110.00")

    @pytest.mark.asyncio
    async def test_does_not_touch_stock(self, harness, customer, product):
        await place(harness, customer, (product, 3))

        assert await harness.stock_of(product.product_id) == 10

    @pytest.mark.asyncio
    async def test_emits_confirmation_request_per_business(self, harness, customer, business, product):
        other = harness.add_business("Bolt Depot")
        bolts = await harness.add_product(other, name="Anchor Bolts", price=Decimal("12.00"))

        result = await place(harness, customer, (product, 1), (bolts, 5))
        effects = EffectAssertions(result.effects)

        confirm = effects.assert_email_sent(subject="New Order Confirmation Required", to=business.email)
        assert "token=token-1" in confirm.html
        effects.assert_email_sent(subject="New Order Confirmation Required", to=other.email)
        effects.assert_email_sent(subject="Order Received")
        effects.assert_notification_sent(title="Order Created", recipient_id=customer.user_id)
        alert = effects.assert_notification_sent(title="New Order Received", recipient_id=business.owner_user_id)
        assert alert.priority == NotificationPriority.HIGH

    @pytest.mark.asyncio
    async def test_rejects_empty_order(self, harness, customer):
        with pytest.raises(ValidationError):
            await harness.orders.create_order(customer, [], ADDRESS)

    @pytest.mark.asyncio
    async def test_rejects_non_positive_quantity(self, harness, customer, product):
        with pytest.raises(ValidationError):
            await place(harness, customer, (product, 0))

    @pytest.mark.asyncio
    async def test_rejects_unknown_product(self, harness, customer):
        with pytest.raises(ValidationError):
            await harness.orders.create_order(customer, [OrderLine(product_id=uuid4(), quantity=1)], ADDRESS)

    @pytest.mark.asyncio
    async def test_nothing_saved_on_validation_failure(self, harness, customer):
        with pytest.raises(ValidationError):
            await harness.orders.create_order(customer, [OrderLine(product_id=uuid4(), quantity=1)], ADDRESS)

        assert harness.event_store.event_count == 0


class TestConfirmByToken:
    """Tests for confirm_order."""

    @pytest.mark.asyncio
    async def test_confirms_item_and_deducts_stock(self, harness, customer, product):
        placed = await place(harness, customer, (product, 2))

        result = await harness.orders.confirm_order("token-1")

        assert result.value.status == OrderItemStatus.CONFIRMED
        assert result.value.items[0].status == OrderItemStatus.CONFIRMED
        assert await harness.stock_of(product.product_id) == 8
        assert result.value.order_id == placed.value.order_id

    @pytest.mark.asyncio
    async def test_creates_business_handled_shipment(self, harness, customer, business, product):
        placed = await place(harness, customer, (product, 1))

        await harness.orders.confirm_order("token-1")

        shipment = (await harness.shipments.load(shipment_id_for(placed.value.order_id, business.business_id))).state
        assert shipment.business_handled is True
        assert shipment.shipment_cost == Decimal("8.00")
        assert harness.carrier.shipments == {}

    @pytest.mark.asyncio
    async def test_issues_and_finalizes_invoice(self, harness, customer, product):
        """Items, supplier shipping and the fee land on one finalized invoice."""
        await place(harness, customer, (product, 2))

        result = await harness.orders.confirm_order("token-1")
        order = result.value

        assert order.invoice_id is not None
        assert order.invoiced_item_ids == [order.items[0].item_id]
        invoice = (await harness.invoices.load(order.invoice_id)).state
        assert invoice.finalized is True
        assert invoice.status == InvoiceStatus.PENDING
        assert invoice.amount_due_minor == 8000 + 800 + 800
        assert harness.payments.invoice_total(order.gateway_invoice_id) == 9600
        assert order.invoice_url == invoice.invoice_url

    @pytest.mark.asyncio
    async def test_notifies_customer(self, harness, customer, product):
        await place(harness, customer, (product, 1))

        result = await harness.orders.confirm_order("token-1")
        effects = EffectAssertions(result.effects)

        effects.assert_notification_sent(title="Order Item Confirmed", recipient_id=customer.user_id)
        effects.assert_email_sent(subject="item confirmed")

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, harness, customer, product):
        await place(harness, customer, (product, 2))
        await harness.orders.confirm_order("token-1")

        with pytest.raises(AlreadyProcessedError):
            await harness.orders.confirm_order("token-1")
        with pytest.raises(AlreadyProcessedError):
            await harness.orders.decline_order("token-1")
        assert await harness.stock_of(product.product_id) == 8

    @pytest.mark.asyncio
    async def test_unknown_token(self, harness):
        with pytest.raises(InvalidTokenError):
            await harness.orders.confirm_order("no-such-token")

    @pytest.mark.asyncio
    async def test_expired_token(self, harness, customer, product):
        await place(harness, customer, (product, 1))
        harness.clock.advance(harness.config.token_ttl + timedelta(seconds=1))

        with pytest.raises(InvalidTokenError):
            await harness.orders.confirm_order("token-1")

    @pytest.mark.asyncio
    async def test_invoice_failure_does_not_undo_confirmation(self, harness, customer, product):
        placed = await place(harness, customer, (product, 1))
        harness.payments.fail_next("create_invoice")

        result = await harness.orders.confirm_order("token-1")

        assert result.value.status == OrderItemStatus.CONFIRMED
        assert result.value.invoice_id is None

        synced = await harness.orders.sync_invoice(placed.value.order_id, harness.admin())
        assert synced.value.invoice_id is not None

    @pytest.mark.asyncio
    async def test_customer_cannot_sync_invoice(self, harness, customer, product):
        placed = await place(harness, customer, (product, 1))

        with pytest.raises(UnauthorizedError):
            await harness.orders.sync_invoice(placed.value.order_id, customer)


class TestDeclineByToken:
    """Tests for decline_order."""

    @pytest.mark.asyncio
    async def test_declines_item_without_moving_stock(self, harness, customer, product):
        await place(harness, customer, (product, 1))

        result = await harness.orders.decline_order("token-1", reason="Out of season")

        item = result.value.items[0]
        assert item.status == OrderItemStatus.DECLINED
        assert item.decline_reason == "Out of season"
        assert await harness.stock_of(product.product_id) == 10

    @pytest.mark.asyncio
    async def test_fully_declined_order_cancels_payment(self, harness, customer, product):
        await place(harness, customer, (product, 1))

        result = await harness.orders.decline_order("token-1")

        assert result.value.status == OrderItemStatus.DECLINED
        assert result.value.payment_status == PaymentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_reason_reaches_customer(self, harness, customer, product):
        await place(harness, customer, (product, 1))

        result = await harness.orders.decline_order("token-1", reason="Discontinued")

        notice = EffectAssertions(result.effects).assert_notification_sent(title="Order Item Declined")
        assert "Discontinued" in notice.message

    @pytest.mark.asyncio
    async def test_last_decision_finalizes_invoice_with_fee_on_invoiced_items(
        self, harness, customer, business, product
    ):
        """A decline can open the finalize gate; the fee covers confirmed items only."""
        other = harness.add_business("Bolt Depot", handles_shipping=True, default_shipping_cost=Decimal("5.00"))
        bolts = await harness.add_product(other, name="Anchor Bolts", price=Decimal("60.00"))
        placed = await place(harness, customer, (product, 1), (bolts, 1))

        await harness.orders.confirm_order("token-1")
        order = await harness.orders.get_order(placed.value.order_id)
        draft = (await harness.invoices.load(order.invoice_id)).state
        assert draft.finalized is False
        assert draft.amount_due_minor == 4000 + 800

        result = await harness.orders.decline_order("token-2")

        invoice = (await harness.invoices.load(order.invoice_id)).state
        assert invoice.finalized is True
        assert invoice.amount_due_minor == 4000 + 800 + 400
        assert invoice.platform_fee == Decimal("4.00")
        assert result.value.status == OrderItemStatus.CONFIRMED
        assert result.value.payment_status == PaymentStatus.PENDING


class TestMultiBusinessInvoice:
    @pytest.mark.asyncio
    async def test_second_confirmation_extends_and_finalizes_invoice(self, harness, customer, business, product):
        other = harness.add_business("Bolt Depot", handles_shipping=True, default_shipping_cost=Decimal("5.00"))
        bolts = await harness.add_product(other, name="Anchor Bolts", price=Decimal("60.00"))
        placed = await place(harness, customer, (product, 1), (bolts, 1))

        await harness.orders.confirm_order("token-1")
        result = await harness.orders.confirm_order("token-2")

        order = result.value
        assert set(order.invoiced_item_ids) == {item.item_id for item in order.items}
        invoice = (await harness.invoices.load(order.invoice_id)).state
        assert invoice.finalized is True
        assert invoice.amount_due_minor == 4000 + 800 + 6000 + 500 + 1000
        assert len(harness.payments.invoices) == 1
        assert order.order_id == placed.value.order_id


class TestUpdateOrderStatus:
    """Tests for update_order_status."""

    @pytest.mark.asyncio
    async def test_business_confirms_its_items(self, harness, customer, business_actor, product):
        placed = await place(harness, customer, (product, 3))

        result = await harness.orders.update_order_status(
            business_actor, placed.value.order_id, OrderItemStatus.CONFIRMED
        )

        assert result.value.status == OrderItemStatus.CONFIRMED
        assert await harness.stock_of(product.product_id) == 7
        assert result.value.invoice_id is not None
        EffectAssertions(result.effects).assert_notification_sent(title="Order Status Updated")

    @pytest.mark.asyncio
    async def test_explicit_shipping_cost_overrides_default(self, harness, customer, business, business_actor, product):
        placed = await place(harness, customer, (product, 1))

        await harness.orders.update_order_status(
            business_actor,
            placed.value.order_id,
            OrderItemStatus.CONFIRMED,
            shipping_cost=Decimal("12.50"),
        )

        shipment = (await harness.shipments.load(shipment_id_for(placed.value.order_id, business.business_id))).state
        assert shipment.shipment_cost == Decimal("12.50")

    @pytest.mark.asyncio
    async def test_negative_shipping_cost_rejected(self, harness, customer, business_actor, product):
        placed = await place(harness, customer, (product, 1))

        with pytest.raises(ValidationError):
            await harness.orders.update_order_status(
                business_actor,
                placed.value.order_id,
                OrderItemStatus.CONFIRMED,
                shipping_cost=Decimal("-1"),
            )

    @pytest.mark.asyncio
    async def test_business_walks_items_to_delivery(self, harness, customer, business_actor, product):
        placed = await place(harness, customer, (product, 1))
        order_id = placed.value.order_id

        for status in (
            OrderItemStatus.CONFIRMED,
            OrderItemStatus.PROCESSING,
            OrderItemStatus.SHIPPED,
            OrderItemStatus.OUT_FOR_DELIVERY,
            OrderItemStatus.DELIVERED,
        ):
            result = await harness.orders.update_order_status(
                business_actor, order_id, status, tracking_number="1Z999" if status == OrderItemStatus.SHIPPED else None
            )
            assert result.value.status == status

        history_notes = [entry.notes for entry in result.value.history if entry.notes]
        assert any("Tracking: 1Z999" in note for note in history_notes)

    @pytest.mark.asyncio
    async def test_customer_cannot_ship(self, harness, customer, business_actor, product):
        placed = await place(harness, customer, (product, 1))
        await harness.orders.update_order_status(business_actor, placed.value.order_id, OrderItemStatus.CONFIRMED)

        with pytest.raises(UnauthorizedError):
            await harness.orders.update_order_status(customer, placed.value.order_id, OrderItemStatus.SHIPPED)

    @pytest.mark.asyncio
    async def test_customer_marks_shipped_order_delivered(self, harness, customer, business_actor, product):
        placed = await place(harness, customer, (product, 1))
        order_id = placed.value.order_id
        for status in (OrderItemStatus.CONFIRMED, OrderItemStatus.PROCESSING, OrderItemStatus.SHIPPED):
            await harness.orders.update_order_status(business_actor, order_id, status)

        result = await harness.orders.update_order_status(customer, order_id, OrderItemStatus.DELIVERED)

        assert result.value.status == OrderItemStatus.DELIVERED

    @pytest.mark.asyncio
    async def test_other_customer_is_rejected(self, harness, customer, product):
        placed = await place(harness, customer, (product, 1))
        stranger = harness.add_customer("Sam Stranger")

        with pytest.raises(UnauthorizedError):
            await harness.orders.update_order_status(stranger, placed.value.order_id, OrderItemStatus.CANCELLED)

    @pytest.mark.asyncio
    async def test_business_without_items_is_rejected(self, harness, customer, product):
        placed = await place(harness, customer, (product, 1))
        other = harness.add_business("Bolt Depot")

        with pytest.raises(UnauthorizedError):
            await harness.orders.update_order_status(
                other.as_actor(), placed.value.order_id, OrderItemStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_reconfirming_is_illegal(self, harness, customer, business_actor, product):
        placed = await place(harness, customer, (product, 1))
        await harness.orders.update_order_status(business_actor, placed.value.order_id, OrderItemStatus.CONFIRMED)

        with pytest.raises(IllegalTransitionError):
            await harness.orders.update_order_status(
                business_actor, placed.value.order_id, OrderItemStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_manufacturer_cannot_decline(self, harness, customer):
        """Only distributors may decline."""
        maker = harness.add_business("Forge Works", kind=BusinessKind.MANUFACTURER)
        anvil = await harness.add_product(maker, name="Anvil", price=Decimal("150.00"))
        placed = await place(harness, customer, (anvil, 1))

        with pytest.raises(UnauthorizedError):
            await harness.orders.update_order_status(
                maker.as_actor(), placed.value.order_id, OrderItemStatus.DECLINED
            )


class TestCancellation:
    """Cancellation stock, invoice and money movement."""

    @pytest.mark.asyncio
    async def test_customer_cancels_pending_order(self, harness, customer, product):
        placed = await place(harness, customer, (product, 1))

        result = await harness.orders.update_order_status(customer, placed.value.order_id, OrderItemStatus.CANCELLED)

        assert result.value.status == OrderItemStatus.CANCELLED
        assert result.value.payment_status == PaymentStatus.CANCELLED
        assert result.value.refunds == []

    @pytest.mark.asyncio
    async def test_unpaid_cancel_restores_stock_and_voids_invoice(self, harness, customer, product):
        placed = await place(harness, customer, (product, 2))
        await harness.orders.confirm_order("token-1")
        assert await harness.stock_of(product.product_id) == 8

        result = await harness.orders.update_order_status(customer, placed.value.order_id, OrderItemStatus.CANCELLED)

        assert await harness.stock_of(product.product_id) == 10
        assert result.value.payment_status == PaymentStatus.CANCELLED
        assert harness.payments.invoices[result.value.gateway_invoice_id].status == "void"
        invoice = (await harness.invoices.load(result.value.invoice_id)).state
        assert invoice.status == InvoiceStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_customer_cancel_of_paid_order_splits_refund_and_fee(self, harness, customer, business):
        """A $110 order refunds $82.50 and pays the supplier $27.50."""
        product = await harness.add_product(business, name="Gas Detector", price=Decimal("100.00"), stock=5)
        order = await paid_order(harness, customer, product)
        assert order.total_amount == Decimal("110.00")
        assert order.payment_status == PaymentStatus.PAID

        result = await harness.orders.update_order_status(
            customer, order.order_id, OrderItemStatus.CANCELLED, reason="Plans changed"
        )

        assert [r.amount_minor for r in harness.payments.refunds] == [8250]
        assert harness.payments.refunds[0].reverse_transfer is False
        assert [(t.amount_minor, t.destination) for t in harness.payments.transfers] == [(2750, "acct_test")]
        assert [r.amount for r in result.value.refunds] == [Decimal("82.50")]
        assert [p.amount for p in result.value.payouts] == [Decimal("27.50")]
        assert result.value.payment_status == PaymentStatus.REFUNDED
        assert await harness.stock_of(product.product_id) == 5

    @pytest.mark.asyncio
    async def test_supplier_cancel_of_paid_order_refunds_in_full(self, harness, customer, business, business_actor):
        product = await harness.add_product(business, name="Gas Detector", price=Decimal("100.00"))
        order = await paid_order(harness, customer, product)

        result = await harness.orders.update_order_status(
            business_actor, order.order_id, OrderItemStatus.CANCELLED, reason="Recalled"
        )

        refund = harness.payments.refunds[0]
        assert refund.amount_minor == 11000
        assert refund.refund_application_fee is True
        assert refund.reverse_transfer is True
        assert harness.payments.transfers == []
        assert result.value.refunds[0].business_id == business.business_id
        alert = EffectAssertions(result.effects).assert_email_sent(
            subject="SUPPLIER_CANCEL", to=harness.config.ops_alert_email
        )
        assert "Recalled" in alert.html

    @pytest.mark.asyncio
    async def test_refund_failure_becomes_ops_alert(self, harness, customer, product):
        order = await paid_order(harness, customer, product)
        harness.payments.fail_next("refund_invoice")

        result = await harness.orders.update_order_status(customer, order.order_id, OrderItemStatus.CANCELLED)

        EffectAssertions(result.effects).assert_email_sent(subject="REFUND_FAILED")
        assert result.value.status == OrderItemStatus.CANCELLED
        assert result.value.refunds == []
        assert result.value.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_payout_needs_payout_account(self, harness, customer):
        business = harness.add_business(
            "Cash Only Supply", handles_shipping=True, default_shipping_cost=Decimal("8.00"), payout_account_id=None
        )
        product = await harness.add_product(business, price=Decimal("40.00"))
        order = await paid_order(harness, customer, product)

        result = await harness.orders.update_order_status(customer, order.order_id, OrderItemStatus.CANCELLED)

        EffectAssertions(result.effects).assert_email_sent(subject="PAYOUT_FAILED")
        assert harness.payments.transfers == []
        assert len(harness.payments.refunds) == 1


class TestMultiBusinessCancellation:
    """Cancellations on a paid order split between two suppliers."""

    async def two_supplier_order(self, harness, customer, business):
        """$50 from each supplier: $110 with the fee, both confirmed and paid."""
        bolts = harness.add_business(
            "Bolt Depot", handles_shipping=True, default_shipping_cost=Decimal("8.00"), payout_account_id="acct_bolt"
        )
        vest = await harness.add_product(business, name="Hi-Vis Vest", price=Decimal("50.00"))
        anchors = await harness.add_product(bolts, name="Anchor Bolts", price=Decimal("50.00"))
        placed = await place(harness, customer, (vest, 1), (anchors, 1))
        await harness.orders.confirm_order("token-1")
        await harness.orders.confirm_order("token-2")
        order = await harness.orders.get_order(placed.value.order_id)
        await harness.pay_invoice(order.gateway_invoice_id)
        order = await harness.orders.get_order(order.order_id)
        assert order.total_amount == Decimal("110.00")
        assert order.payment_status == PaymentStatus.PAID
        return order, bolts

    @pytest.mark.asyncio
    async def test_customer_cancel_after_supplier_cancel_refunds_the_rest(
        self, harness, customer, business, business_actor
    ):
        order, _ = await self.two_supplier_order(harness, customer, business)
        await harness.orders.update_order_status(business_actor, order.order_id, OrderItemStatus.CANCELLED)

        result = await harness.orders.update_order_status(customer, order.order_id, OrderItemStatus.CANCELLED)

        assert [r.amount_minor for r in harness.payments.refunds] == [5500, 4125]
        assert [(t.amount_minor, t.destination) for t in harness.payments.transfers] == [(1375, "acct_bolt")]
        moved = sum(r.amount_minor for r in harness.payments.refunds) + sum(
            t.amount_minor for t in harness.payments.transfers
        )
        assert moved == 11000
        assert result.value.status == OrderItemStatus.CANCELLED
        assert result.value.payment_status == PaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_customer_cancel_skips_shipped_supplier(self, harness, customer, business, business_actor):
        """Only the unshipped supplier's item is cancelled and refunded."""
        order, bolts = await self.two_supplier_order(harness, customer, business)
        for status in (OrderItemStatus.PROCESSING, OrderItemStatus.SHIPPED):
            await harness.orders.update_order_status(business_actor, order.order_id, status)

        result = await harness.orders.update_order_status(customer, order.order_id, OrderItemStatus.CANCELLED)

        assert [r.amount_minor for r in harness.payments.refunds] == [4125]
        assert [(t.amount_minor, t.destination) for t in harness.payments.transfers] == [(1375, "acct_bolt")]
        statuses = {item.business_id: item.status for item in result.value.items}
        assert statuses[business.business_id] == OrderItemStatus.SHIPPED
        assert statuses[bolts.business_id] == OrderItemStatus.CANCELLED
        assert result.value.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_customer_cannot_cancel_fully_shipped_order(self, harness, customer, business):
        order, bolts = await self.two_supplier_order(harness, customer, business)
        for actor in (business.as_actor(), bolts.as_actor()):
            for status in (OrderItemStatus.PROCESSING, OrderItemStatus.SHIPPED):
                await harness.orders.update_order_status(actor, order.order_id, status)

        with pytest.raises(UnauthorizedError):
            await harness.orders.update_order_status(customer, order.order_id, OrderItemStatus.CANCELLED)

        assert harness.payments.refunds == []
        assert harness.payments.transfers == []


class TestBusinessShare:
    def test_share_is_pro_rata_of_total(self):
        business_id = uuid4()
        order = placed_order().state
        assert business_share(order, order.items) == order.total_amount

        half = order.model_copy(
            update={"items": [order_item(business_id, price="20.00"), order_item(business_id, price="20.00")]}
        )
        assert business_share(half, half.items[:1]) == Decimal("22.00")

    def test_zero_subtotal(self):
        order = placed_order().state.model_copy(update={"subtotal": Decimal("0")})
        assert business_share(order, order.items) == Decimal("0")
