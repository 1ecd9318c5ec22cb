"""Check that an order's bank charges account for its total."""

import logging
from decimal import Decimal

from .models import ChargeValidation
from .money import to_decimal, within_tolerance

logger = logging.getLogger(__name__)

CHARGE_TOLERANCE = Decimal("0.02")


def validate_charges(
    bank_charges: list[Decimal],
    order_total: Decimal,
    non_bank_amount: Decimal = Decimal("0"),
) -> ChargeValidation:
    """
    Compare the bank charges with what the bank should have been charged.

    The expected bank amount is the order total minus whatever was paid by
    gift card, points, or promotional credit.

    Args:
        bank_charges: Positive bank charge amounts
        order_total: The order total
        non_bank_amount: Amount paid through non-bank methods

    Returns:
        Validation result; ``valid`` is True within $0.02
    """
    charges_sum = sum((to_decimal(c) for c in bank_charges), Decimal("0"))
    expected = abs(to_decimal(order_total)) - to_decimal(non_bank_amount)
    difference = charges_sum - expected

    if within_tolerance(charges_sum, expected, CHARGE_TOLERANCE):
        return ChargeValidation(
            valid=True,
            bank_charges_sum=charges_sum,
            expected_sum=expected,
            difference=difference,
        )

    if difference < 0:
        reason = (
            f"Bank charges ${charges_sum:.2f} are ${-difference:.2f} short of "
            f"expected ${expected:.2f} (a charge may not have posted yet)"
        )
    else:
        reason = (
            f"Bank charges ${charges_sum:.2f} exceed expected ${expected:.2f} "
            f"by ${difference:.2f} (possible extra charge)"
        )

    logger.debug(reason)
    return ChargeValidation(
        valid=False,
        bank_charges_sum=charges_sum,
        expected_sum=expected,
        difference=difference,
        reason=reason,
    )
