"""
TOTALS
======

One place for the cart arithmetic the storefront used to repeat in the cart
drawer, order summary, product page and cart page.

Three price sources meet here:
- Store API item prices, in minor units (may or may not include add-ons)
- the wc/v3 catalogue price captured when the item was added (decimal string)
- the add-ons cached against the cart item key

Line rule: unit = base + sum(add-on prices); subtotal = unit * quantity.
"""

import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel

from woostore.models import CartAddon
from woostore.prices import DEFAULT_MINOR_UNIT, minor_to_major, money, prices_match

logger = logging.getLogger("storefront-totals")

TOLERANCE = 0.01


class LineTotals(BaseModel):
    base_price: float = 0.0
    addons_price: float = 0.0
    unit_price: float = 0.0
    quantity: int = 1
    subtotal: float = 0.0
    store_subtotal: float = 0.0
    addons_included_upstream: bool = False


class CartTotals(BaseModel):
    items_subtotal: float = 0.0
    addons_total: float = 0.0
    discount: float = 0.0
    shipping: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    item_count: int = 0


class Reconciliation(BaseModel):
    store_items_total: float = 0.0
    store_total: float = 0.0
    computed: CartTotals
    matches_store: bool = True
    difference: float = 0.0


def sum_addon_prices(addons: Sequence[CartAddon]) -> float:
    return money(sum(a.price or 0.0 for a in addons))


def compute_line_totals(
    base_price: float,
    addons: Sequence[CartAddon],
    quantity: int,
    store_subtotal: float = 0.0,
    addons_included_upstream: bool = False
) -> LineTotals:
    addons_price = sum_addon_prices(addons)
    unit_price = money(base_price + addons_price)
    quantity = max(int(quantity or 0), 0)
    return LineTotals(
        base_price=money(base_price),
        addons_price=addons_price,
        unit_price=unit_price,
        quantity=quantity,
        subtotal=money(unit_price * quantity),
        store_subtotal=money(store_subtotal),
        addons_included_upstream=addons_included_upstream,
    )


def _minor_unit(block: Optional[Dict]) -> int:
    if not block:
        return DEFAULT_MINOR_UNIT
    try:
        return int(block.get("currency_minor_unit", DEFAULT_MINOR_UNIT))
    except (TypeError, ValueError):
        return DEFAULT_MINOR_UNIT


def reconcile_line(
    item: Dict,
    addons: Sequence[CartAddon],
    base_price: Optional[float] = None
) -> LineTotals:
    """
    Work out the true line totals for a Store API cart item.

    With a known catalogue base price the Store API unit price tells us whether
    the plugin already folded the add-ons in. Without one the Store API price
    is the base and add-ons are added on top.
    """
    prices = item.get("prices") or {}
    totals = item.get("totals") or {}
    store_unit = minor_to_major(prices.get("price"), _minor_unit(prices))
    store_subtotal = minor_to_major(totals.get("line_subtotal"), _minor_unit(totals))
    quantity = item.get("quantity") or 0
    addons_price = sum_addon_prices(addons)

    if base_price is None or not addons_price:
        base = store_unit if base_price is None else float(base_price)
        return compute_line_totals(base, addons, quantity, store_subtotal)

    if prices_match(store_unit, base_price + addons_price, TOLERANCE):
        return compute_line_totals(base_price, addons, quantity, store_subtotal, addons_included_upstream=True)

    if not prices_match(store_unit, base_price, TOLERANCE):
        # Sale price or a catalogue change since the item was added
        logger.warning(
            f"Cart item {item.get('key')}: Store API unit {store_unit:.2f} matches neither "
            f"base {base_price:.2f} nor base+add-ons {base_price + addons_price:.2f}"
        )
        return compute_line_totals(store_unit, addons, quantity, store_subtotal)

    return compute_line_totals(base_price, addons, quantity, store_subtotal)


def compute_cart_totals(
    lines: Sequence[LineTotals],
    discount: float = 0.0,
    shipping: float = 0.0,
    tax: float = 0.0
) -> CartTotals:
    items_subtotal = money(sum(line.subtotal for line in lines))
    addons_total = money(sum(line.addons_price * line.quantity for line in lines))
    total = money(items_subtotal - discount + shipping + tax)
    return CartTotals(
        items_subtotal=items_subtotal,
        addons_total=addons_total,
        discount=money(discount),
        shipping=money(shipping),
        tax=money(tax),
        total=max(total, 0.0),
        item_count=sum(line.quantity for line in lines),
    )


def reconcile_cart(store_cart: Dict, lines: List[LineTotals]) -> Reconciliation:
    """Recompute cart totals and compare them with the Store API's own numbers"""
    totals = store_cart.get("totals") or {}
    unit = _minor_unit(totals)

    computed = compute_cart_totals(
        lines,
        discount=minor_to_major(totals.get("total_discount"), unit),
        shipping=minor_to_major(totals.get("total_shipping"), unit),
        tax=minor_to_major(totals.get("total_tax"), unit),
    )
    store_items_total = minor_to_major(totals.get("total_items"), unit)
    difference = money(computed.items_subtotal - store_items_total)
    tolerance = TOLERANCE * max(len(lines), 1)

    return Reconciliation(
        store_items_total=store_items_total,
        store_total=minor_to_major(totals.get("total_price"), unit),
        computed=computed,
        matches_store=abs(difference) <= tolerance + 1e-9,
        difference=difference,
    )
