"""Tests for order payment ledgers and charge validation."""

from datetime import date
from decimal import Decimal

import pytest

from order_sync.exceptions import NoBankChargesError, PaymentPendingError
from order_sync.models import Order, PaymentCharge
from order_sync.validator import validate_charges


def make_order(total: str, payments) -> Order:
    return Order(
        id="A1",
        order_date=date(2025, 1, 10),
        total=Decimal(total),
        subtotal=Decimal(total),
        provider="amazon",
        payments=payments,
    )


def card(amount: str, kind: str = "charge") -> PaymentCharge:
    return PaymentCharge(amount=Decimal(amount), kind=kind, last4="1211")


def gift_card(amount: str) -> PaymentCharge:
    return PaymentCharge(amount=Decimal(amount), description="Gift Card")


class TestFinalCharges:
    """Test extracting bank charges from the payment ledger."""

    def test_gift_card_is_not_a_bank_charge(self):
        """Non-bank payments are dropped from the final charges."""
        order = make_order("103.27", [card("50.00"), card("40.00"), gift_card("13.27")])

        assert order.final_charges() == [Decimal("50.00"), Decimal("40.00")]
        assert order.non_bank_amount() == Decimal("13.27")
        assert order.is_multi_delivery()

    def test_refunds_are_ignored(self):
        """Refund entries are not charges."""
        order = make_order("30.00", [card("30.00"), card("5.00", kind="refund")])
        assert order.final_charges() == [Decimal("30.00")]
        assert not order.is_multi_delivery()

    def test_empty_ledger_is_pending(self):
        """No payments yet means the order hasn't been charged."""
        with pytest.raises(PaymentPendingError):
            make_order("30.00", []).final_charges()

    def test_only_refunds_is_pending(self):
        """Nothing usable left is still pending."""
        with pytest.raises(PaymentPendingError):
            make_order("30.00", [card("30.00", kind="refund")]).final_charges()

    def test_paid_entirely_by_gift_card(self):
        """An order with only non-bank payments has no bank charges."""
        with pytest.raises(NoBankChargesError):
            make_order("30.00", [gift_card("30.00")]).final_charges()

    def test_no_ledger(self):
        """Providers without a ledger never report multi-delivery."""
        order = make_order("30.00", None)
        assert not order.tracks_payments
        assert not order.is_multi_delivery()
        assert order.non_bank_amount() == Decimal("0")


class TestValidateCharges:
    """Test checking bank charges against the order total."""

    def test_charges_plus_gift_card_match_total(self):
        """Bank charges cover the total minus the gift card."""
        result = validate_charges(
            [Decimal("50.00"), Decimal("40.00")], Decimal("103.27"), Decimal("13.27")
        )
        assert result.valid
        assert result.expected_sum == Decimal("90.00")

    def test_within_two_cents(self):
        """Small rounding differences are accepted."""
        result = validate_charges([Decimal("49.98")], Decimal("50.00"))
        assert result.valid

    def test_missing_charge(self):
        """Short charges point at a charge that hasn't posted."""
        result = validate_charges([Decimal("30.00")], Decimal("50.00"))
        assert not result.valid
        assert result.difference == Decimal("-20.00")
        assert "short" in result.reason

    def test_extra_charge(self):
        """Charges above the total point at an extra charge."""
        result = validate_charges(
            [Decimal("30.00"), Decimal("30.00")], Decimal("50.00")
        )
        assert not result.valid
        assert "exceed" in result.reason

    def test_three_cents_off_is_invalid(self):
        """The two cent tolerance is inclusive and no wider."""
        assert not validate_charges([Decimal("49.97")], Decimal("50.00")).valid
