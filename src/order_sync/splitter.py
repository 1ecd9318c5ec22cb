"""Category split allocation for matched transactions.

Items are grouped by their assigned category in first-occurrence order.
Each group gets its item subtotal plus a proportional share of the order's
tax. Amounts are rounded to cents (ROUND_HALF_UP) and any rounding residual
goes to the largest split, so the splits always add up to the transaction
amount exactly.

Orders whose items all land in one category never produce splits; the
category is set directly on the transaction instead.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from .exceptions import CategorizationError
from .models import (
    CategorizationResult,
    Category,
    Order,
    OrderItem,
    Split,
    Transaction,
)
from .money import format_signed_usd, format_usd, match_sign, round_cents

logger = logging.getLogger(__name__)

# Residuals above $0.10 are still applied but point at a data problem
# (shipping, gift cards, or a charge that differs from the items' total)
SAFETY_THRESHOLD = Decimal("0.10")


class ItemClassifier(Protocol):
    """Anything that can assign categories to order items."""

    def categorize_items(
        self, items: list[OrderItem], categories: list[Category]
    ) -> CategorizationResult: ...


@dataclass
class CategoryGroup:
    """Items of one order that share a category."""

    category_id: str
    category_name: str
    items: list[OrderItem] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        """Sum of the line prices in this group."""
        return sum((item.price for item in self.items), Decimal("0"))


def format_quantity(quantity: Decimal) -> str:
    """Render a quantity without a trailing ``.0`` for whole numbers."""
    if quantity == quantity.to_integral_value():
        return str(int(quantity))
    return str(quantity.normalize())


def format_item_line(item: OrderItem) -> str:
    """
    Format one item for a split note.

    Examples:
        ``- Milk $3.99``
        ``- Eggs (x2) $7.98``
    """
    if item.quantity != 1:
        quantity = format_quantity(item.quantity)
        return f"- {item.name} (x{quantity}) {format_usd(item.price)}"
    return f"- {item.name} {format_usd(item.price)}"


def format_category_note(category_name: str, items: list[OrderItem]) -> str:
    """Build a note with a ``CategoryName:`` header and one line per item."""
    lines = [f"{category_name}:"]
    lines.extend(format_item_line(item) for item in items)
    return "\n".join(lines)


def group_items_by_category(
    order: Order, assignments: CategorizationResult
) -> list[CategoryGroup]:
    """
    Group an order's items by their assigned category.

    Groups come out in the order each category first appears among the
    order's items, so the same inputs always give the same grouping.

    Raises:
        CategorizationError: If there are no assignments, or their count
            doesn't match the order's items
    """
    categorizations = assignments.categorizations
    if not categorizations:
        raise CategorizationError(f"No categorizations returned for order {order.id}")
    if len(categorizations) != len(order.items):
        raise CategorizationError(
            f"Order {order.id} has {len(order.items)} items but "
            f"{len(categorizations)} categorizations"
        )

    groups: dict[str, CategoryGroup] = {}
    for item, assignment in zip(order.items, categorizations):
        group = groups.get(assignment.category_id)
        if group is None:
            group = CategoryGroup(
                category_id=assignment.category_id,
                category_name=assignment.category_name,
            )
            groups[assignment.category_id] = group
        group.items.append(item)

    # dicts keep insertion order, which is first-occurrence order here
    return list(groups.values())


def create_splits(
    order: Order, transaction: Transaction, assignments: CategorizationResult
) -> list[Split] | None:
    """
    Compute category splits for a transaction.

    Steps:
    1. Group items by category
    2. Return None if there is only one category
    3. Give each group its subtotal plus tax at the order's tax rate
    4. Round each split to cents with the transaction's sign
    5. Add any residual to the split with the largest absolute amount

    Args:
        order: The order the transaction paid for
        transaction: The matched (or consolidated) transaction
        assignments: Category per order item, parallel to ``order.items``

    Returns:
        Splits summing exactly to ``transaction.amount``, or None for a
        single-category order

    Raises:
        CategorizationError: If the assignments don't line up with the items
    """
    groups = group_items_by_category(order, assignments)
    if len(groups) == 1:
        logger.debug(f"Order {order.id} is single-category, no splits needed")
        return None

    tax_rate = Decimal("0")
    if order.subtotal != 0:
        tax_rate = order.tax / order.subtotal

    splits = []
    for group in groups:
        subtotal = group.subtotal
        raw_amount = subtotal + subtotal * tax_rate
        splits.append(
            Split(
                category_id=group.category_id,
                category_name=group.category_name,
                amount=round_cents(match_sign(raw_amount, transaction.amount)),
                notes=format_category_note(group.category_name, group.items),
            )
        )

    target = round_cents(transaction.amount)
    actual = sum((split.amount for split in splits), Decimal("0"))
    residual = target - actual

    if residual != 0:
        # max() keeps the first of equal candidates, i.e. first-occurrence order
        largest = max(splits, key=lambda split: abs(split.amount))
        largest.amount += residual

        if abs(residual) > SAFETY_THRESHOLD:
            logger.warning(
                f"Large rounding adjustment for order {order.id}: "
                f"{format_signed_usd(residual)} applied to {largest.category_name} "
                f"(items {format_signed_usd(actual)} vs transaction "
                f"{format_signed_usd(target)})"
            )
        else:
            logger.info(
                f"Applied rounding adjustment of {format_signed_usd(residual)} "
                f"to {largest.category_name}"
            )

    final_total = sum((split.amount for split in splits), Decimal("0"))
    assert final_total == target, "Adjustment failed"

    return splits


def get_single_category_info(
    order: Order, assignments: CategorizationResult
) -> tuple[str, str]:
    """
    Get the category and note for a single-category order.

    Returns:
        Tuple of (category_id, notes), with notes in the same format as
        split notes

    Raises:
        CategorizationError: If there are no assignments or the order spans
            more than one category
    """
    groups = group_items_by_category(order, assignments)
    if len(groups) > 1:
        raise CategorizationError(
            f"Order {order.id} spans {len(groups)} categories; create splits instead"
        )

    group = groups[0]
    return group.category_id, format_category_note(group.category_name, group.items)


class Splitter:
    """
    Creates splits for orders using an item classifier.

    The classification of the most recent order is kept, so calling
    ``create_splits`` and then ``get_single_category_info`` for the same
    order only hits the classifier once.
    """

    def __init__(self, classifier: ItemClassifier):
        """Initialize the splitter."""
        self.classifier = classifier
        self._last_order_id: str | None = None
        self._last_result: CategorizationResult | None = None

    def categorize(
        self, order: Order, categories: list[Category]
    ) -> CategorizationResult:
        """Classify an order's items, reusing the last result for the same order."""
        if self._last_order_id == order.id and self._last_result is not None:
            return self._last_result

        result = self.classifier.categorize_items(order.items, categories)
        self._last_order_id = order.id
        self._last_result = result
        return result

    def create_splits(
        self, order: Order, transaction: Transaction, categories: list[Category]
    ) -> list[Split] | None:
        """Classify the order and compute its splits (None if single-category)."""
        return create_splits(order, transaction, self.categorize(order, categories))

    def get_single_category_info(
        self, order: Order, categories: list[Category]
    ) -> tuple[str, str]:
        """Classify the order and return its one category and note."""
        return get_single_category_info(order, self.categorize(order, categories))
