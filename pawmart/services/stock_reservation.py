"""
Stock Reservation Engine

One reservation path for both checkout branches:
1. Validate every cart line against the catalog, collecting ALL shortfalls
2. Price the lines and snapshot the product attributes
3. Produce conditional stock decrements for the caller's transaction

The decrements are not written here. The caller commits them together
with the order (COD) or the pending checkout (ONLINE), so a lost race
against a concurrent reservation cancels the whole transaction and is
mapped back to the affected lines by `conflict_error`.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from pawmart.core.exceptions import ConflictError, OrderValidationError, OutOfStockError, PawMartException
from pawmart.database.base import OrderStore
from pawmart.database.operations import AdjustStock, StockDelta, TransactionCancelled
from pawmart.models.catalog import CartItem, Product
from pawmart.models.order import OrderLine, OrderTotals
from pawmart.services.pricing import line_subtotal, totals_for_lines

logger = logging.getLogger(__name__)

REASON_NOT_FOUND = "not_found"
REASON_VARIATION_NOT_FOUND = "variation_not_found"
REASON_VARIATION_REQUIRED = "variation_required"
REASON_INSUFFICIENT_STOCK = "insufficient_stock"

_MESSAGES = {
    REASON_NOT_FOUND: "Product not found",
    REASON_VARIATION_NOT_FOUND: "Variation not found",
    REASON_VARIATION_REQUIRED: "Variation selection is required for this product",
    REASON_INSUFFICIENT_STOCK: "Insufficient stock",
}


@dataclass
class Reservation:
    lines: List[OrderLine]
    totals: OrderTotals
    adjustments: List[AdjustStock]


def _shortfall(item: CartItem, reason: str, name: Optional[str] = None,
               available: Optional[int] = None, requested: Optional[int] = None) -> Dict:
    return {
        "product_id": item.product_id,
        "variation_id": item.variation_id,
        "name": name,
        "requested": item.quantity if requested is None else requested,
        "available": available,
        "reason": reason,
        "message": _MESSAGES[reason],
    }


def _group_deltas(entries: Sequence[Tuple[str, StockDelta]]) -> List[AdjustStock]:
    """One AdjustStock per product, one delta per counter."""
    grouped: "OrderedDict[str, OrderedDict[Optional[str], StockDelta]]" = OrderedDict()
    for product_id, delta in entries:
        counters = grouped.setdefault(product_id, OrderedDict())
        existing = counters.get(delta.variation_id)
        if existing is None:
            counters[delta.variation_id] = StockDelta(
                quantity_change=delta.quantity_change,
                variation_id=delta.variation_id,
                variation_index=delta.variation_index,
            )
        else:
            existing.quantity_change += delta.quantity_change
    return [
        AdjustStock(product_id=product_id, deltas=list(counters.values()))
        for product_id, counters in grouped.items()
    ]


class StockReservationEngine:

    def __init__(self, store: OrderStore):
        self.store = store

    async def _load_products(self, product_ids: Sequence[str]) -> Dict[str, Optional[Product]]:
        products: Dict[str, Optional[Product]] = {}
        for product_id in product_ids:
            if product_id not in products:
                products[product_id] = await self.store.get_product(product_id)
        return products

    async def reserve(self, items: Sequence[CartItem]) -> Reservation:
        """
        Validate and price `items` and build their stock decrements.

        Raises:
            OrderValidationError: empty cart or non-positive quantity
            OutOfStockError: listing every line that cannot be satisfied
        """
        if not items:
            raise OrderValidationError("Cart is empty")

        bad_quantities = [i.product_id for i in items if i.quantity <= 0]
        if bad_quantities:
            raise OrderValidationError(
                "Item quantities must be greater than zero",
                {"product_ids": bad_quantities}
            )

        products = await self._load_products([i.product_id for i in items])
        shortfalls: List[Dict] = []
        lines: List[OrderLine] = []
        deltas: List[Tuple[str, StockDelta]] = []
        requested: Dict[Tuple[str, Optional[str]], int] = {}

        for item in items:
            product = products.get(item.product_id)
            if product is None or product.is_deleted:
                shortfalls.append(_shortfall(item, REASON_NOT_FOUND))
                continue

            variation = None
            variation_index = None
            if item.variation_id:
                variation_index = product.find_variation(item.variation_id)
                if variation_index is None:
                    shortfalls.append(_shortfall(item, REASON_VARIATION_NOT_FOUND, product.name))
                    continue
                variation = product.variations[variation_index]
                available = variation.stock
                unit_price = variation.unit_price
            elif product.has_variations:
                shortfalls.append(_shortfall(item, REASON_VARIATION_REQUIRED, product.name))
                continue
            else:
                available = product.stock
                unit_price = product.unit_price

            counter = (item.product_id, item.variation_id)
            requested[counter] = requested.get(counter, 0) + item.quantity
            if requested[counter] > available:
                shortfalls.append(_shortfall(
                    item, REASON_INSUFFICIENT_STOCK, product.name, available, requested[counter]
                ))
                continue

            lines.append(OrderLine(
                product_id=item.product_id,
                variation_id=item.variation_id,
                quantity=item.quantity,
                price=unit_price,
                subtotal=line_subtotal(unit_price, item.quantity),
                product_snapshot=product.snapshot(variation),
            ))
            deltas.append((item.product_id, StockDelta(
                quantity_change=-item.quantity,
                variation_id=item.variation_id,
                variation_index=variation_index,
            )))

        if shortfalls:
            logger.info(f"Reservation rejected: {len(shortfalls)} of {len(items)} lines unavailable")
            raise OutOfStockError(shortfalls)

        return Reservation(
            lines=lines,
            totals=totals_for_lines(lines),
            adjustments=_group_deltas(deltas),
        )

    async def restore(self, lines: Sequence[OrderLine]) -> List[AdjustStock]:
        """
        Increments that give back the stock held by `lines`.

        Variation positions are resolved against the current catalog;
        products or variations that no longer exist are skipped.
        """
        products = await self._load_products([line.product_id for line in lines])
        deltas: List[Tuple[str, StockDelta]] = []

        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                logger.warning(f"Skipping stock restore for missing product {line.product_id}")
                continue
            variation_index = None
            if line.variation_id:
                variation_index = product.find_variation(line.variation_id)
                if variation_index is None:
                    logger.warning(
                        f"Skipping stock restore for missing variation "
                        f"{line.variation_id} of product {line.product_id}"
                    )
                    continue
            deltas.append((line.product_id, StockDelta(
                quantity_change=line.quantity,
                variation_id=line.variation_id,
                variation_index=variation_index,
            )))

        return _group_deltas(deltas)

    @staticmethod
    def release(adjustments: Sequence[AdjustStock]) -> List[AdjustStock]:
        """Inverse of a just-committed reservation."""
        return [
            AdjustStock(
                product_id=adjustment.product_id,
                deltas=[
                    StockDelta(
                        quantity_change=-delta.quantity_change,
                        variation_id=delta.variation_id,
                        variation_index=delta.variation_index,
                    )
                    for delta in adjustment.deltas
                ],
            )
            for adjustment in adjustments
        ]

    @staticmethod
    def conflict_error(lines: Sequence[OrderLine], exc: TransactionCancelled) -> PawMartException:
        """
        Translate a cancelled reservation transaction.

        Stock guards that evaluated false mean a concurrent reservation won;
        every line of the affected products is reported. Any other failure,
        including a transient write conflict on a product, is a retryable
        conflict.
        """
        failed_products = {f.operation.product_id for f in exc.condition_failures_of(AdjustStock)}
        if failed_products:
            items = [
                {
                    "product_id": line.product_id,
                    "variation_id": line.variation_id,
                    "name": line.name,
                    "requested": line.quantity,
                    "available": None,
                    "reason": REASON_INSUFFICIENT_STOCK,
                    "message": _MESSAGES[REASON_INSUFFICIENT_STOCK],
                }
                for line in lines
                if line.product_id in failed_products
            ]
            return OutOfStockError(items)

        return ConflictError(
            "Order could not be placed because data changed concurrently, please retry",
            {"failed_operations": [type(f.operation).__name__ for f in exc.failures]}
        )
