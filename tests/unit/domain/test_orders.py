"""
Unit tests for OrderAggregate.

Tests cover:
- Placing an order
- Per-item status changes and the derived order status
- Terminal items refusing further moves
- Payment status, invoice linkage, refunds and payouts
- Replaying history into an identical state
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from crewflow.actors import Customer, SupplyingBusiness, SystemActor
from crewflow.domain.orders import OrderAggregate, OrderItem, OrderPayout, OrderRefund
from crewflow.exceptions import IllegalTransitionError, ValidationError
from crewflow.types import OrderItemStatus, PaymentStatus

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


def make_item(business_id: UUID, price: str = "40.00", quantity: int = 1, token: str = "tok") -> OrderItem:
    total = Decimal(price) * quantity
    return OrderItem(
        item_id=uuid4(),
        product_id=uuid4(),
        product_name="Safety Boots",
        business_id=business_id,
        quantity=quantity,
        unit_price=Decimal(price),
        original_currency="USD",
        original_total=total,
        converted_total=total,
        conversion_rate=Decimal("1"),
        confirmation_token=token,
        token_expires_at=NOW + timedelta(days=7),
    )


@pytest.fixture
def customer() -> Customer:
    return Customer(user_id=uuid4())


@pytest.fixture
def supplier() -> SupplyingBusiness:
    return SupplyingBusiness(user_id=uuid4(), business_id=uuid4())


@pytest.fixture
def placed(customer: Customer, supplier: SupplyingBusiness) -> OrderAggregate:
    order = OrderAggregate(uuid4())
    order.place(
        customer_id=customer.user_id,
        delivery_address={"city": "Austin"},
        items=[
            make_item(supplier.business_id, token="tok-a"),
            make_item(supplier.business_id, price="20.00", quantity=2, token="tok-b"),
        ],
        currency="USD",
        subtotal=Decimal("80.00"),
        platform_fee=Decimal("8.00"),
        total_amount=Decimal("88.00"),
        actor=customer,
    )
    return order


class TestPlace:
    """Tests for OrderAggregate.place()."""

    def test_place_sets_state(self, placed: OrderAggregate, customer: Customer) -> None:
        """A placed order is pending with its totals and one history entry."""
        state = placed.state
        assert state is not None
        assert state.status == OrderItemStatus.PENDING
        assert state.payment_status == PaymentStatus.PENDING
        assert state.total_amount == Decimal("88.00")
        assert state.customer_id == customer.user_id
        assert len(state.history) == 1
        assert placed.version == 1

    def test_place_twice_raises(self, placed: OrderAggregate, customer: Customer) -> None:
        """An order can only be placed once."""
        with pytest.raises(ValidationError):
            placed.place(
                customer_id=customer.user_id,
                delivery_address={},
                items=[make_item(uuid4())],
                currency="USD",
                subtotal=Decimal("1"),
                platform_fee=Decimal("0"),
                total_amount=Decimal("1"),
                actor=customer,
            )

    def test_place_without_items_raises(self, customer: Customer) -> None:
        """Orders need at least one item."""
        order = OrderAggregate(uuid4())
        with pytest.raises(ValidationError):
            order.place(
                customer_id=customer.user_id,
                delivery_address={},
                items=[],
                currency="USD",
                subtotal=Decimal("0"),
                platform_fee=Decimal("0"),
                total_amount=Decimal("0"),
                actor=customer,
            )

    def test_item_by_token(self, placed: OrderAggregate) -> None:
        """Items are found by their confirmation token."""
        state = placed.state
        assert state is not None
        assert state.item_by_token("tok-b") is state.items[1]
        assert state.item_by_token("nope") is None


class TestItemStatus:
    """Tests for per-item transitions."""

    def test_mixed_items_derive_least_advanced(
        self, placed: OrderAggregate, supplier: SupplyingBusiness
    ) -> None:
        """One confirmed item and one pending item leave the order pending."""
        state = placed.state
        assert state is not None
        placed.change_item_status(state.items[0].item_id, OrderItemStatus.CONFIRMED, supplier)
        assert placed.state.status == OrderItemStatus.PENDING
        placed.change_item_status(state.items[1].item_id, OrderItemStatus.CONFIRMED, supplier)
        assert placed.state.status == OrderItemStatus.CONFIRMED

    def test_declined_item_records_reason(self, placed: OrderAggregate, supplier: SupplyingBusiness) -> None:
        """Declining stores the reason on the item and in history."""
        item_id = placed.state.items[0].item_id
        placed.change_item_status(item_id, OrderItemStatus.DECLINED, supplier, reason="Out of stock")
        state = placed.state
        assert state.item(item_id).decline_reason == "Out of stock"
        assert state.history[-1].reason == "Out of stock"
        assert state.history[-1].actor_kind == supplier.kind

    def test_terminal_item_cannot_move(self, placed: OrderAggregate, supplier: SupplyingBusiness) -> None:
        """Declined items are final."""
        item_id = placed.state.items[0].item_id
        placed.change_item_status(item_id, OrderItemStatus.DECLINED, supplier)
        with pytest.raises(IllegalTransitionError):
            placed.change_item_status(item_id, OrderItemStatus.CONFIRMED, supplier)

    def test_same_status_is_rejected(self, placed: OrderAggregate, supplier: SupplyingBusiness) -> None:
        """Moving to the current status is not a transition."""
        with pytest.raises(IllegalTransitionError):
            placed.change_item_status(placed.state.items[0].item_id, OrderItemStatus.PENDING, supplier)

    def test_has_shipped_item(self, placed: OrderAggregate, supplier: SupplyingBusiness) -> None:
        """has_shipped_item turns true once any item ships."""
        item_id = placed.state.items[0].item_id
        placed.change_item_status(item_id, OrderItemStatus.CONFIRMED, supplier)
        assert not placed.state.has_shipped_item
        placed.change_item_status(item_id, OrderItemStatus.SHIPPED, SystemActor("tracking"))
        assert placed.state.has_shipped_item


class TestMoney:
    """Tests for payment status, invoices, refunds and payouts."""

    def test_payment_status_same_value_is_noop(self, placed: OrderAggregate, customer: Customer) -> None:
        """Re-applying the current payment status raises no event."""
        version = placed.version
        placed.change_payment_status(PaymentStatus.PENDING, customer)
        assert placed.version == version

    def test_payment_status_change_is_audited(self, placed: OrderAggregate) -> None:
        """Payment changes appear in history with a payment: prefix."""
        placed.change_payment_status(PaymentStatus.PAID, SystemActor("payment_webhook"), notes="paid")
        assert placed.state.payment_status == PaymentStatus.PAID
        assert placed.state.history[-1].to_status == "payment:paid"

    def test_link_invoice_is_idempotent(self, placed: OrderAggregate, customer: Customer) -> None:
        """Linking the same invoice twice raises one event."""
        invoice_id = uuid4()
        placed.link_invoice(invoice_id, "in_1", "https://pay/1", customer)
        version = placed.version
        placed.link_invoice(invoice_id, "in_1", "https://pay/1", customer)
        assert placed.version == version
        assert placed.state.gateway_invoice_id == "in_1"

    def test_mark_items_invoiced_skips_known_ids(self, placed: OrderAggregate, customer: Customer) -> None:
        """Only new item ids are recorded."""
        ids = [item.item_id for item in placed.state.items]
        placed.mark_items_invoiced(ids[:1], customer)
        placed.mark_items_invoiced(ids, customer)
        assert placed.state.invoiced_item_ids == ids
        version = placed.version
        placed.mark_items_invoiced(ids, customer)
        assert placed.version == version

    def test_refunds_and_payouts(self, placed: OrderAggregate, supplier: SupplyingBusiness) -> None:
        """Refunds sum into refunded_amount; payouts are kept per business."""
        actor = SystemActor("payouts")
        placed.record_refund(OrderRefund(refund_id="re_1", amount=Decimal("30.00"), reason="cancel"), actor)
        placed.record_refund(OrderRefund(refund_id="re_2", amount=Decimal("12.50"), reason="cancel"), actor)
        placed.record_payout(
            OrderPayout(transfer_id="tr_1", business_id=supplier.business_id, amount=Decimal("10"), reason="x"),
            actor,
        )
        assert placed.state.refunded_amount == Decimal("42.50")
        assert placed.state.payouts[0].transfer_id == "tr_1"


class TestReplay:
    """Tests for rebuilding state from history."""

    def test_replay_gives_same_state(self, placed: OrderAggregate, supplier: SupplyingBusiness) -> None:
        """Loading the raised events into a new aggregate reproduces the state."""
        placed.change_item_status(placed.state.items[0].item_id, OrderItemStatus.CONFIRMED, supplier)
        events = placed.uncommitted_events
        replayed = OrderAggregate(placed.aggregate_id)
        replayed.load_from_history(events)
        assert replayed.state == placed.state
        assert replayed.version == placed.version
