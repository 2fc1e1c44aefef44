"""
ORDER BUILDER
=============

Cart + checkout form -> wc/v3 POST /orders payload.

wc/v3 recalculates line prices from the catalogue unless subtotal/total are
sent explicitly, which silently drops add-on pricing. Every line item here
therefore carries base + add-ons, times quantity, and its add-ons as meta_data.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from woostore.models import CartAddon, MetaDataEntry
from woostore.normalizer import parse_extra_data
from woostore.prices import format_money, parse_price
from woostore.totals import compute_line_totals

logger = logging.getLogger("storefront-orders")

DEFAULT_PAYMENT_METHOD = "cod"
DEFAULT_PAYMENT_TITLE = "Request Quote"
DEFAULT_STATUS = "pending"


class Address(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    company: str = ""
    address_1: str = Field(default="", alias="address1")
    address_2: str = Field(default="", alias="address2")
    city: str = ""
    state: str = ""
    postcode: str = ""
    country: str = ""
    email: str = ""
    phone: str = ""


class PaymentMethod(BaseModel):
    id: str = DEFAULT_PAYMENT_METHOD
    title: str = DEFAULT_PAYMENT_TITLE


class CheckoutInput(BaseModel):
    """Checkout form as posted by the storefront"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    billing: Address = Address()
    shipping: Optional[Address] = None
    ship_to_different_address: bool = Field(default=False, alias="shipToDifferentAddress")
    payment_method: Optional[PaymentMethod] = Field(default=None, alias="paymentMethod")
    customer_note: str = Field(default="", alias="customerNote")
    customer_id: Optional[int] = Field(default=None, alias="customerId")
    is_paid: bool = Field(default=False, alias="isPaid")
    meta_data: List[Dict[str, Any]] = Field(default_factory=list, alias="metaData")


def build_order_line_item_meta(addons: Sequence[CartAddon]) -> List[Dict[str, str]]:
    """Add-ons -> order line meta_data, shown in wp-admin and order emails"""
    meta = []
    for addon in addons:
        if addon.price > 0:
            display_value = f"{addon.value} (+${format_money(addon.price)})"
        else:
            display_value = f"{addon.value} (Included)"
        meta.append(MetaDataEntry(
            key=addon.field_name,
            value=addon.value,
            display_key=addon.field_name,
            display_value=display_value,
        ).model_dump())
    return meta


def _base_price(cart_node: Dict) -> float:
    line_totals = cart_node.get("lineTotals") or {}
    if line_totals.get("basePrice") not in (None, ""):
        return parse_price(line_totals["basePrice"])

    product = (cart_node.get("product") or {}).get("node") or {}
    variation = (cart_node.get("variation") or {}).get("node") or {}
    return parse_price(
        variation.get("rawPrice") or product.get("rawPrice") or product.get("price") or 0
    )


def build_line_item(cart_node: Dict, addons: Optional[Sequence[CartAddon]] = None) -> Dict[str, Any]:
    """One transformed cart node -> one wc/v3 line item"""
    if addons is None:
        addons = parse_extra_data(cart_node.get("extraData"))

    product = (cart_node.get("product") or {}).get("node") or {}
    quantity = int(cart_node.get("quantity") or 1)
    line = compute_line_totals(_base_price(cart_node), addons, quantity)

    item: Dict[str, Any] = {
        "product_id": product.get("databaseId"),
        "quantity": quantity,
        "subtotal": f"{line.subtotal:.2f}",
        "total": f"{line.subtotal:.2f}",
    }

    variation = (cart_node.get("variation") or {}).get("node")
    if variation and variation.get("databaseId"):
        item["variation_id"] = variation["databaseId"]

    if addons:
        item["meta_data"] = build_order_line_item_meta(addons)

    return item


def _shipping_lines(cart: Dict) -> List[Dict[str, str]]:
    chosen = cart.get("chosenShippingMethods") or []
    if not chosen:
        return []

    rate_id = chosen[0]
    for package in cart.get("availableShippingMethods") or []:
        for rate in package.get("rates") or []:
            if rate.get("id") == rate_id:
                return [{
                    "method_id": rate_id,
                    "method_title": rate.get("label") or rate_id,
                    "total": f"{parse_price(rate.get('cost')):.2f}",
                }]
    return [{"method_id": rate_id, "method_title": rate_id}]


def build_order_payload(
    cart: Dict,
    checkout: Union[CheckoutInput, Dict],
    addons_by_key: Optional[Mapping[str, Sequence[CartAddon]]] = None
) -> Dict[str, Any]:
    """
    Build the wc/v3 order for a transformed cart.

    `addons_by_key` overrides the add-ons found in each node's extraData,
    keyed by cart item key.
    """
    if not isinstance(checkout, CheckoutInput):
        checkout = CheckoutInput.model_validate(checkout or {})

    nodes = ((cart or {}).get("contents") or {}).get("nodes") or []
    if not nodes:
        raise ValueError("Cart is empty")

    addons_by_key = addons_by_key or {}
    line_items = []
    for node in nodes:
        addons = addons_by_key.get(node.get("key"))
        line_items.append(build_line_item(node, list(addons) if addons else None))

    payment = checkout.payment_method or PaymentMethod()
    payload: Dict[str, Any] = {
        "payment_method": payment.id or DEFAULT_PAYMENT_METHOD,
        "payment_method_title": payment.title or DEFAULT_PAYMENT_TITLE,
        "set_paid": checkout.is_paid,
        "status": DEFAULT_STATUS,
        "billing": checkout.billing.model_dump(),
        "line_items": line_items,
        "customer_note": checkout.customer_note,
        "meta_data": checkout.meta_data,
    }

    if checkout.ship_to_different_address and checkout.shipping:
        shipping = checkout.shipping.model_dump()
        shipping.pop("email", None)
        payload["shipping"] = shipping

    shipping_lines = _shipping_lines(cart)
    if shipping_lines:
        payload["shipping_lines"] = shipping_lines

    coupons = [c.get("code") for c in cart.get("appliedCoupons") or [] if c.get("code")]
    if coupons:
        payload["coupon_lines"] = [{"code": code} for code in coupons]

    if checkout.customer_id:
        payload["customer_id"] = checkout.customer_id

    logger.info(
        f"Built order with {len(line_items)} line items "
        f"({sum(1 for i in line_items if i.get('meta_data'))} with add-ons)"
    )
    return payload
