"""Pro-rata allocation of what the bank charged across an order's items.

When part of an order is paid by gift card, points, or promotional credit,
the bank charge is smaller than the items add up to. Every item is scaled
by the same ratio so each category carries its share of the discount:

    multiplier = bank_total / sum(item prices)
    item cost  = item price * multiplier

Tax is folded into the allocated costs.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from .exceptions import DataInconsistencyError
from .models import Order, OrderItem
from .money import format_signed_usd, format_usd, round_cents, to_decimal

logger = logging.getLogger(__name__)

# Larger residuals are left alone; the splitter balances against the
# transaction anyway
MAX_ROUNDING_ADJUSTMENT = Decimal("0.10")


@dataclass
class Allocation:
    """The share of the bank total assigned to one item."""

    item: OrderItem
    allocated_cost: Decimal


@dataclass
class AllocationResult:
    """Allocations for every item of an order, in item order."""

    multiplier: Decimal
    allocations: list[Allocation] = field(default_factory=list)

    @property
    def total_allocated(self) -> Decimal:
        return sum((a.allocated_cost for a in self.allocations), Decimal("0"))


def allocate(items: list[OrderItem], bank_total: Decimal) -> AllocationResult:
    """
    Distribute ``bank_total`` across items in proportion to their prices.

    Each cost is rounded to cents. A residual under $0.10 goes to the item
    with the largest allocated cost (the first one on ties).

    Raises:
        DataInconsistencyError: If there are no items, the total is negative,
            or an item has a negative price
    """
    if not items:
        raise DataInconsistencyError("No items to allocate")

    total = to_decimal(bank_total)
    if total < 0:
        raise DataInconsistencyError(
            f"Cannot allocate a negative total ({format_signed_usd(total)})"
        )

    list_total = Decimal("0")
    for item in items:
        if item.price < 0:
            raise DataInconsistencyError(f"Item '{item.name}' has a negative price")
        list_total += item.price

    if list_total == 0:
        return AllocationResult(
            multiplier=Decimal("0"),
            allocations=[Allocation(item, Decimal("0.00")) for item in items],
        )

    multiplier = total / list_total
    allocations = [
        Allocation(item, round_cents(item.price * multiplier)) for item in items
    ]

    result = AllocationResult(multiplier=multiplier, allocations=allocations)
    residual = round_cents(total) - result.total_allocated
    if residual != 0:
        if abs(residual) < MAX_ROUNDING_ADJUSTMENT:
            largest = max(allocations, key=lambda a: a.allocated_cost)
            largest.allocated_cost += residual
        else:
            logger.warning(
                f"Allocation is off by {format_signed_usd(residual)} "
                f"across {len(items)} items"
            )

    return result


def allocate_order(order: Order, bank_total: Decimal) -> Order:
    """
    Copy ``order`` with each item priced at its share of ``bank_total``.

    The copy's subtotal is the allocated total and its tax is zero, so
    splitting it divides exactly what the bank was charged.
    """
    result = allocate(order.items, bank_total)
    logger.debug(
        f"Allocated {format_usd(bank_total)} across order {order.id} "
        f"(multiplier {result.multiplier:.4f})"
    )

    items = [
        a.item.model_copy(update={"price": a.allocated_cost, "unit_price": None})
        for a in result.allocations
    ]
    return order.model_copy(
        update={
            "items": items,
            "subtotal": result.total_allocated,
            "tax": Decimal("0"),
        }
    )
