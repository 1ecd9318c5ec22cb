"""Provider adapters that turn raw retailer order JSON into Orders.

Each adapter takes one order as produced by that retailer's exporter:

- Walmart: the purchase-history order payload, with its payment ledger
  attached under ``ledger``
- Amazon: one entry of the order scraper's ``orders`` list (dollar strings)
- Costco: one warehouse receipt; Costco exposes no payment ledger
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

from .models import Order, OrderItem, PaymentCharge
from .money import parse_usd, to_decimal

logger = logging.getLogger(__name__)

PROVIDER_DISPLAY_NAMES = {
    "walmart": "Walmart",
    "amazon": "Amazon",
    "costco": "Costco",
}

WALMART_DATE_FORMATS = [
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d",
]


def display_name(provider: str) -> str:
    """Human-readable provider name, as it shows up in merchant names."""
    return PROVIDER_DISPLAY_NAMES.get(provider, provider.title())


def parse_order_date(value: str, formats: list[str]) -> date:
    """
    Parse an order date string, trying each format in turn.

    Raises:
        ValueError: If no format matches
    """
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized order date: {value!r}")


def _money_value(node: dict[str, Any] | None) -> Decimal:
    """Read a ``{"value": 12.34}`` money node, treating a missing node as zero."""
    if not node or node.get("value") is None:
        return Decimal("0")
    return to_decimal(node["value"])


# ============================================================================
# Walmart
# ============================================================================


def order_from_walmart(data: dict[str, Any]) -> Order:
    """
    Build an Order from a Walmart order payload.

    The order total includes the driver tip. Every final charge of every
    ledger payment method becomes one PaymentCharge; gift cards carry no
    card digits and so count as non-bank payments.
    """
    price_details = data.get("priceDetails") or {}
    tip = _money_value(price_details.get("driverTip"))
    fees = sum(
        (_money_value(fee) for fee in price_details.get("fees") or []),
        Decimal("0"),
    )

    items = []
    for group in data.get("groups") or []:
        for item in group.get("items") or []:
            quantity = to_decimal(item.get("quantity", 1))
            line_price = _money_value((item.get("priceInfo") or {}).get("linePrice"))
            items.append(
                OrderItem(
                    name=item["name"],
                    price=line_price,
                    quantity=quantity,
                    unit_price=line_price / quantity if quantity else None,
                    sku=item.get("usItemId"),
                )
            )

    payments = None
    ledger = data.get("ledger")
    if ledger is not None:
        payments = []
        for method in ledger.get("paymentMethods") or []:
            last4 = method.get("lastFour") or None
            if method.get("paymentType") == "GIFTCARD":
                last4 = None
            for charge in method.get("finalCharges") or []:
                amount = to_decimal(charge)
                payments.append(
                    PaymentCharge(
                        amount=abs(amount),
                        kind="refund" if amount < 0 else "charge",
                        last4=last4,
                        description=method.get("paymentType", ""),
                    )
                )

    return Order(
        id=data["id"],
        order_date=parse_order_date(data["orderDate"], WALMART_DATE_FORMATS),
        total=_money_value(price_details.get("grandTotal")) + tip,
        subtotal=_money_value(price_details.get("subTotal")),
        tax=_money_value(price_details.get("taxTotal")),
        tip=tip,
        fees=fees,
        items=items,
        provider="walmart",
        payments=payments,
    )


# ============================================================================
# Amazon
# ============================================================================


def order_from_amazon(data: dict[str, Any]) -> Order:
    """
    Build an Order from one Amazon scraper order.

    Amounts arrive as dollar strings (``"$1,234.56"``). Item prices are line
    totals. Shipping is carried as a fee.
    """
    items = []
    for item in data.get("items") or []:
        price = parse_usd(item["price"])
        quantity = Decimal(item.get("quantity") or 1)
        items.append(
            OrderItem(
                name=item["name"],
                price=price,
                quantity=quantity,
                unit_price=price / quantity,
            )
        )

    payments = []
    for txn in data.get("transactions") or []:
        payments.append(
            PaymentCharge(
                amount=abs(parse_usd(txn["amount"])),
                kind="refund" if txn.get("type") == "refund" else "charge",
                last4=txn.get("last4") or None,
                description=txn.get("description", ""),
                charged_on=date.fromisoformat(txn["date"]) if txn.get("date") else None,
            )
        )

    return Order(
        id=data["orderId"],
        order_date=date.fromisoformat(data["orderDate"]),
        total=parse_usd(data["total"]),
        subtotal=parse_usd(data["subtotal"]) if data.get("subtotal") else Decimal("0"),
        tax=parse_usd(data["tax"]) if data.get("tax") else Decimal("0"),
        fees=parse_usd(data["shipping"]) if data.get("shipping") else Decimal("0"),
        items=items,
        provider="amazon",
        payments=payments,
    )


# ============================================================================
# Costco
# ============================================================================


def order_from_costco(data: dict[str, Any]) -> Order:
    """Build an Order from a Costco warehouse receipt (no payment ledger)."""
    if data.get("transactionDate"):
        order_date = date.fromisoformat(data["transactionDate"])
    else:
        order_date = datetime.fromisoformat(data["transactionDateTime"]).date()

    items = []
    for item in data.get("itemArray") or []:
        unit = to_decimal(item.get("unit") or 1)
        name = item.get("itemDescription01", "").strip()
        items.append(
            OrderItem(
                name=name or f"Item {item.get('itemNumber', '')}".strip(),
                price=to_decimal(item["amount"]),
                quantity=unit,
                unit_price=(
                    to_decimal(item["itemUnitPriceAmount"])
                    if item.get("itemUnitPriceAmount") is not None
                    else None
                ),
                sku=item.get("itemNumber"),
            )
        )

    return Order(
        id=data["transactionBarcode"],
        order_date=order_date,
        total=to_decimal(data["total"]),
        subtotal=to_decimal(data.get("subTotal", 0)),
        tax=to_decimal(data.get("taxes", 0)),
        items=items,
        provider="costco",
        payments=None,
    )


ORDER_PARSERS: dict[str, Callable[[dict[str, Any]], Order]] = {
    "walmart": order_from_walmart,
    "amazon": order_from_amazon,
    "costco": order_from_costco,
}


def load_orders(path: Path, provider: str) -> list[Order]:
    """
    Load a provider's exported orders from a JSON file.

    The file may hold a list of orders or an object with an ``orders`` list
    (the Amazon scraper's output shape).

    Args:
        path: Path to the JSON export
        provider: Provider key ('walmart', 'amazon', 'costco')

    Returns:
        Parsed orders in file order

    Raises:
        ValueError: If the provider is unknown or the file isn't an order list
    """
    parser = ORDER_PARSERS.get(provider)
    if parser is None:
        raise ValueError(
            f"Unknown provider '{provider}'. "
            f"Expected one of: {', '.join(sorted(ORDER_PARSERS))}"
        )

    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    if isinstance(payload, dict):
        payload = payload.get("orders")
    if not isinstance(payload, list):
        raise ValueError(f"{path} does not contain a list of orders")

    orders = [parser(entry) for entry in payload]
    logger.info(f"Loaded {len(orders)} {display_name(provider)} orders from {path}")
    return orders
