"""
CART TRANSFORMER
================

Store API cart (minor units, snake_case) -> the GraphQL-shaped cart the
storefront components were written against. Add-ons are normalized into the
extraData envelope and every line carries reconciled totals.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from woostore.cache import CachedItem
from woostore.models import CartAddon
from woostore.normalizer import extract_addons_from_cart_item, to_extra_data
from woostore.prices import DEFAULT_MINOR_UNIT, format_price, parse_price, raw_price
from woostore.totals import LineTotals, reconcile_cart, reconcile_line

logger = logging.getLogger("storefront-cart")

EMPTY_TOTALS = {
    "total_price": "0",
    "total_items": "0",
    "total_tax": "0",
    "total_discount": "0",
    "total_shipping": "0",
}


def _unit(block: Dict) -> int:
    try:
        return int(block.get("currency_minor_unit", DEFAULT_MINOR_UNIT))
    except (TypeError, ValueError):
        return DEFAULT_MINOR_UNIT


def _symbol(block: Dict) -> str:
    return block.get("currency_symbol") or "$"


def _slug(permalink: Optional[str]) -> str:
    if not permalink:
        return ""
    return permalink.rstrip("/").split("/")[-1]


def _image(item: Dict) -> Optional[Dict]:
    images = item.get("images") or []
    if not images:
        return None
    image = images[0]
    return {
        "sourceUrl": image.get("src"),
        "cartSourceUrl": image.get("thumbnail"),
        "altText": image.get("alt") or item.get("name"),
        "title": image.get("name") or item.get("name"),
    }


def _line_totals_view(line: LineTotals) -> Dict[str, Any]:
    return {
        "basePrice": f"{line.base_price:.2f}",
        "addonsPrice": f"{line.addons_price:.2f}",
        "unitPrice": f"{line.unit_price:.2f}",
        "quantity": line.quantity,
        "subtotal": f"{line.subtotal:.2f}",
        "storeSubtotal": f"{line.store_subtotal:.2f}",
        "addonsIncludedUpstream": line.addons_included_upstream,
    }


def resolve_item_addons(item: Dict, cached: Optional[CachedItem] = None) -> List[CartAddon]:
    """Add-ons from the response win; the cache fills in when the response has none"""
    addons = extract_addons_from_cart_item(item)
    if addons:
        return addons
    if cached and cached.addons:
        logger.debug(f"Using cached add-ons for cart item {item.get('key')}")
        return list(cached.addons)
    return []


def _transform_item(item: Dict, cached: Optional[CachedItem]) -> Tuple[Dict[str, Any], LineTotals]:
    prices = item.get("prices") or {}
    totals = item.get("totals") or {}
    unit, symbol = _unit(prices), _symbol(prices)
    is_variation = bool(item.get("variation"))

    addons = resolve_item_addons(item, cached)
    line = reconcile_line(item, addons, base_price=cached.base_price if cached else None)

    price_fields = {
        "price": format_price(prices.get("price"), unit, symbol),
        "regularPrice": format_price(prices.get("regular_price"), unit, symbol),
        "salePrice": format_price(prices.get("sale_price"), unit, symbol),
        "rawPrice": raw_price(prices.get("price"), unit),
        "rawRegularPrice": raw_price(prices.get("regular_price"), unit),
        "rawSalePrice": raw_price(prices.get("sale_price"), unit),
    }

    product_node = {
        "databaseId": item.get("id"),
        "name": item.get("name"),
        "slug": _slug(item.get("permalink")),
        "sku": item.get("sku") or "",
        "type": "VARIABLE" if is_variation else "SIMPLE",
        "image": _image(item),
        **price_fields,
        # Store API carts don't carry stock status
        "stockStatus": "INSTOCK",
        "stockQuantity": None,
        "lowStockAmount": item.get("low_stock_remaining"),
    }

    variation = None
    if is_variation:
        variation = {
            "node": {
                "databaseId": item.get("id"),
                "name": item.get("name"),
                "slug": _slug(item.get("permalink")),
                "stockStatus": "INSTOCK",
                "image": _image(item),
                "attributes": [
                    {"name": v.get("attribute"), "value": v.get("value")}
                    for v in item.get("variation") or []
                ],
                **price_fields,
            }
        }

    totals_unit = _unit(totals)
    node = {
        "key": item.get("key"),
        "quantity": item.get("quantity", 0),
        "subtotal": format_price(totals.get("line_subtotal"), totals_unit, symbol),
        "total": format_price(totals.get("line_total"), totals_unit, symbol),
        "totals": {
            "line_subtotal": totals.get("line_subtotal"),
            "line_total": totals.get("line_total"),
            "line_subtotal_tax": totals.get("line_subtotal_tax"),
            "line_total_tax": totals.get("line_total_tax"),
        },
        "product": {"node": product_node},
        "variation": variation,
        "extraData": to_extra_data(addons),
        "lineTotals": _line_totals_view(line),
    }
    return node, line


def transform_cart_item(item: Dict, cached: Optional[CachedItem] = None) -> Dict[str, Any]:
    """Transform one Store API cart item into a GraphQL cart node"""
    node, _ = _transform_item(item, cached)
    return node


def transform_cart(store_cart: Optional[Dict], cached: Optional[Dict[str, CachedItem]] = None) -> Dict[str, Any]:
    """Transform a Store API cart into the GraphQL cart shape"""
    store_cart = store_cart or {}
    cached = cached or {}
    totals = store_cart.get("totals") or dict(EMPTY_TOTALS)
    unit, symbol = _unit(totals), _symbol(totals)
    items = store_cart.get("items") or []

    nodes, lines = [], []
    for item in items:
        node, line = _transform_item(item, cached.get(item.get("key")))
        nodes.append(node)
        lines.append(line)

    reconciliation = reconcile_cart({"totals": totals}, lines)
    if not reconciliation.matches_store:
        logger.info(
            f"Store API items total {reconciliation.store_items_total:.2f} differs from "
            f"recomputed {reconciliation.computed.items_subtotal:.2f} by {reconciliation.difference:.2f}"
        )

    shipping_packages = store_cart.get("shipping_rates") or []
    computed = reconciliation.computed

    return {
        "total": format_price(totals.get("total_price"), unit, symbol),
        "rawTotal": raw_price(totals.get("total_price"), unit),
        "subtotal": format_price(totals.get("total_items"), unit, symbol),
        "totalTax": format_price(totals.get("total_tax"), unit, symbol),
        "discountTotal": format_price(totals.get("total_discount"), unit, symbol),
        "rawDiscountTotal": raw_price(totals.get("total_discount"), unit),
        "shippingTotal": format_price(totals.get("total_shipping"), unit, symbol),
        "chosenShippingMethods": [
            rate.get("rate_id")
            for package in shipping_packages
            for rate in package.get("shipping_rates") or []
            if rate.get("selected")
        ],
        "availableShippingMethods": [
            {
                "packageId": package.get("package_id"),
                "rates": [
                    {
                        "id": rate.get("rate_id"),
                        "label": rate.get("name"),
                        "cost": format_price(rate.get("price"), _unit(rate), symbol),
                    }
                    for rate in package.get("shipping_rates") or []
                ],
            }
            for package in shipping_packages
        ],
        "appliedCoupons": [
            {
                "code": coupon.get("code"),
                "discountAmount": format_price((coupon.get("totals") or {}).get("total_discount"), unit, symbol),
                "discountTax": format_price((coupon.get("totals") or {}).get("total_discount_tax"), unit, symbol),
                "description": "",
            }
            for coupon in store_cart.get("coupons") or []
        ],
        "isEmpty": not items,
        "contents": {
            "itemCount": store_cart.get("items_count") or 0,
            "productCount": len(items),
            "nodes": nodes,
        },
        "addonTotals": {
            "itemsSubtotal": f"{computed.items_subtotal:.2f}",
            "addonsTotal": f"{computed.addons_total:.2f}",
            "total": f"{computed.total:.2f}",
            "storeItemsTotal": f"{reconciliation.store_items_total:.2f}",
            "matchesStore": reconciliation.matches_store,
        },
    }


def transform_add_to_cart_input(payload: Dict) -> Dict[str, Any]:
    """Storefront add-to-cart input -> Store API POST /cart/add-item body"""
    body: Dict[str, Any] = {
        "id": payload.get("productId") or payload.get("id"),
        "quantity": payload.get("quantity") or 1,
    }
    variation_id = payload.get("variationId") or payload.get("variation_id")
    if variation_id:
        body["variation"] = [{"attribute": "variation_id", "value": str(variation_id)}]
    if payload.get("addons_configuration"):
        body["addons_configuration"] = payload["addons_configuration"]
    return body


def is_cart_empty(cart: Optional[Dict]) -> bool:
    if not cart:
        return True
    return bool(cart.get("isEmpty")) or (cart.get("contents") or {}).get("itemCount") == 0


def get_cart_item_count(cart: Optional[Dict]) -> int:
    return ((cart or {}).get("contents") or {}).get("itemCount") or 0


def get_cart_total(cart: Optional[Dict]) -> float:
    if not cart or not cart.get("rawTotal"):
        return 0.0
    return parse_price(cart["rawTotal"])


def find_cart_item(cart: Optional[Dict], item_key: str) -> Optional[Dict]:
    for node in ((cart or {}).get("contents") or {}).get("nodes") or []:
        if node.get("key") == item_key:
            return node
    return None
