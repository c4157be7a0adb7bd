"""Order totals: 10% tax on the item subtotal, flat shipping below the free-shipping threshold."""

from decimal import Decimal
from typing import Iterable, Optional

from pawmart.core.config import settings
from pawmart.models.order import OrderLine, OrderTotals
from pawmart.models.serialization import money


def line_subtotal(unit_price: Decimal, quantity: int) -> Decimal:
    return money(unit_price * quantity)


def calculate_totals(
    items_subtotal: Decimal,
    tax_rate: Optional[Decimal] = None,
    free_shipping_threshold: Optional[Decimal] = None,
    shipping_fee: Optional[Decimal] = None,
) -> OrderTotals:
    """
    Totals for an item subtotal. Rates default to the configured business
    rules (10% tax, 5 shipping below 100).
    """
    tax_rate = settings.TAX_RATE if tax_rate is None else tax_rate
    threshold = settings.FREE_SHIPPING_THRESHOLD if free_shipping_threshold is None else free_shipping_threshold
    flat_fee = settings.SHIPPING_FEE if shipping_fee is None else shipping_fee

    subtotal = money(items_subtotal)
    tax = money(subtotal * tax_rate)
    shipping = money(flat_fee if subtotal < threshold else 0)
    return OrderTotals(
        items_subtotal=subtotal,
        tax_amount=tax,
        shipping_fee=shipping,
        total_amount=money(subtotal + tax + shipping),
    )


def totals_for_lines(lines: Iterable[OrderLine]) -> OrderTotals:
    return calculate_totals(sum((line.subtotal for line in lines), Decimal("0")))


def format_amount(amount: Decimal) -> str:
    """Two-decimal fixed string used on the gateway wire."""
    return f"{money(amount):.2f}"
