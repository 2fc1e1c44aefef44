#!/usr/bin/env python3
"""
STOREFRONT: Headless WooCommerce bridge
========================================
Serves the storefront UI the GraphQL-shaped cart and products it was built
against, backed by WooCommerce's Store API (cart) and wc/v3 (catalogue, orders).

Add-on pricing is reconciled here: selections are formatted into
addons_configuration on the way in, add-ons are recovered from whichever
field the plugin used on the way out, and every order line is sent with
explicit base + add-on totals.
"""

import os
import logging
from typing import Optional, List, Dict, Any
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from woo_client import (
    StoreApiClient,
    StoreResponse,
    StoreSession,
    WooApiError,
    WooRestClient,
    cart_token_customer,
    session_cookie_customer,
)
from woostore.addons import (
    AddonSelectionError,
    configuration_from_extra_data,
    format_addons_for_cart,
    selected_to_cart_addons,
    selections_from_extra_data,
    validate_addons_selection,
)
from woostore.cache import ANONYMOUS, AddonCache
from woostore.cart import transform_add_to_cart_input, transform_cart
from woostore.models import CartAddon
from woostore.normalizer import parse_extra_data
from woostore.orders import Address, CheckoutInput, build_order_payload
from woostore.prices import parse_price
from woostore.products import transform_product, transform_variation

# =============================================================================
# CONFIGURATION
# =============================================================================

DATA_DIR = Path(os.getenv("STOREFRONT_DATA_DIR", "/data/storefront"))
CUSTOMER_COOKIE = os.getenv("STOREFRONT_CUSTOMER_COOKIE", "wc-customer-id")
CORS_ORIGINS = [o.strip() for o in os.getenv("STOREFRONT_CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("storefront")

# =============================================================================
# FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Storefront",
    description="Headless WooCommerce bridge with add-on price reconciliation",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Cart-Token"],
)

store_client = StoreApiClient()
rest_client = WooRestClient()
addon_cache = AddonCache(DATA_DIR)

# =============================================================================
# MODELS
# =============================================================================

class AddItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(alias="productId")
    quantity: int = Field(default=1, ge=1)
    variation_id: Optional[int] = Field(default=None, alias="variationId")
    addons_configuration: Optional[Dict[str, Any]] = None
    selected_addons: Optional[List[Optional[Dict[str, Any]]]] = Field(default=None, alias="selectedAddons")
    extra_data: Optional[List[Dict[str, Any]]] = Field(default=None, alias="extraData")


class UpdateItemRequest(BaseModel):
    key: str
    quantity: int = Field(ge=0)


class RemoveItemRequest(BaseModel):
    key: str


class CouponRequest(BaseModel):
    code: str


class ShippingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    package_id: Any = Field(default=0, alias="packageId")
    rate_id: str = Field(alias="rateId")


class CustomerUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    billing: Optional[Address] = Field(default=None, alias="billingAddress")
    shipping: Optional[Address] = Field(default=None, alias="shippingAddress")

    def addresses(self) -> Dict[str, Dict]:
        """Only the fields the client sent; wc shipping addresses have no email"""
        out = {}
        if self.billing:
            out["billing"] = self.billing.model_dump(exclude_unset=True)
        if self.shipping:
            shipping = self.shipping.model_dump(exclude_unset=True)
            shipping.pop("email", None)
            out["shipping"] = shipping
        return out

# =============================================================================
# HELPERS
# =============================================================================

def _store_session(request: Request) -> StoreSession:
    return StoreSession(
        cookie=request.headers.get("cookie", ""),
        cart_token=request.headers.get("cart-token"),
    )


def cache_session(session: StoreSession, response: Optional[StoreResponse] = None) -> str:
    """
    Add-on cache namespace: the Store API customer id of the shopper.

    Read from the request first (Cart-Token claim, then session cookie), then
    from what WooCommerce handed a new session. Cart-Tokens are re-issued on
    every response, so a raw token is only used when it carries no claim.
    """
    set_cookies = response.set_cookie if response else []
    response_token = response.cart_token if response else None

    customer = (
        cart_token_customer(session.cart_token)
        or session_cookie_customer(session.cookie)
        or cart_token_customer(response_token)
        or next(filter(None, (session_cookie_customer(c) for c in set_cookies)), None)
    )
    return customer or session.cart_token or response_token or ANONYMOUS


def _customer_id(request: Request) -> int:
    """Signed-in customer from the wc-customer-id cookie the login flow sets"""
    value = request.cookies.get(CUSTOMER_COOKIE, "")
    if not value.isdigit():
        raise HTTPException(status_code=401, detail={"code": "not_authenticated", "message": "Not authenticated"})
    return int(value)


def _upstream_error(e: WooApiError) -> HTTPException:
    return HTTPException(status_code=e.status, detail=e.to_detail())


def _respond(content: Any, upstream: Optional[StoreResponse] = None, status_code: int = 200) -> JSONResponse:
    """JSON response carrying the Store API session headers back to the browser"""
    response = JSONResponse(content=content, status_code=status_code)
    if upstream:
        for cookie in upstream.set_cookie:
            response.headers.append("set-cookie", cookie)
        if upstream.cart_token:
            response.headers["Cart-Token"] = upstream.cart_token
    return response


def _cart_response(session: StoreSession, upstream: StoreResponse) -> JSONResponse:
    """Transform a Store API cart, dropping cache entries for items that are gone"""
    session_id = cache_session(session, upstream)
    store_cart = upstream.data if isinstance(upstream.data, dict) else {}
    keys = [item.get("key") for item in store_cart.get("items") or []]
    addon_cache.sync_with_cart(session_id, keys)
    return _respond(transform_cart(store_cart, addon_cache.items_for(session_id)), upstream)


async def _catalogue_price(product_id: int, variation_id: Optional[int] = None) -> Optional[float]:
    """wc/v3 price the add-ons are priced on top of; None when it can't be looked up"""
    if not rest_client.configured:
        return None
    try:
        if variation_id:
            variations = await rest_client.get_variations(product_id)
            source = next((v for v in variations if v.get("id") == variation_id), None)
        else:
            source = await rest_client.get_product(product_id)
    except WooApiError as e:
        logger.warning(f"No catalogue price for product {product_id}: {e.message}")
        return None
    if not source or source.get("price") in (None, ""):
        return None
    return parse_price(source["price"])


def _added_item_key(store_cart: Dict, target_id: int, known_keys) -> Optional[str]:
    matches = [item for item in store_cart.get("items") or [] if item.get("id") == target_id]
    if not matches:
        return None
    fresh = [item for item in matches if item.get("key") not in known_keys]
    return (fresh or matches)[-1].get("key")

# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.on_event("shutdown")
async def shutdown():
    await store_client.close()
    await rest_client.close()


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "store_api": store_client.base_url,
        "rest_api": rest_client.base_url,
        "rest_credentials": rest_client.configured,
    }

# -----------------------------------------------------------------------------
# CART
# -----------------------------------------------------------------------------

@app.get("/api/cart")
async def get_cart(request: Request):
    """Current cart in the GraphQL shape"""
    session = _store_session(request)
    try:
        upstream = await store_client.get_cart(session)
    except WooApiError as e:
        raise _upstream_error(e)
    return _cart_response(session, upstream)


@app.post("/api/cart/add-item")
async def add_item(body: AddItemRequest, request: Request):
    """
    Add a product with add-ons.

    Add-ons may come as a ready addons_configuration, as selections
    index-aligned with the product's add-on schema, or in the legacy
    extra_data envelope.
    """
    session = _store_session(request)
    cart_addons: List[CartAddon] = []
    configuration = body.addons_configuration or {}

    try:
        if body.selected_addons:
            product_addons = await rest_client.get_product_addons(body.id)
            valid, error = validate_addons_selection(product_addons, body.selected_addons)
            if not valid:
                raise AddonSelectionError(error)
            configuration = format_addons_for_cart(body.selected_addons, product_addons)
            cart_addons = selected_to_cart_addons(body.selected_addons, product_addons)
        elif body.extra_data and not configuration:
            configuration = configuration_from_extra_data(body.extra_data)
            selections = selections_from_extra_data(body.extra_data)
            if selections and rest_client.configured:
                product_addons = await rest_client.get_product_addons(body.id)
                cart_addons = selected_to_cart_addons(selections, product_addons)
            else:
                cart_addons = parse_extra_data(body.extra_data)
    except AddonSelectionError as e:
        raise HTTPException(status_code=422, detail={"code": "invalid_addons", "message": str(e)})
    except ValidationError as e:
        fields = ", ".join(".".join(map(str, err["loc"])) for err in e.errors())
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_addons", "message": f"Invalid add-on selection: {fields}"},
        )
    except WooApiError as e:
        raise _upstream_error(e)

    payload = transform_add_to_cart_input({
        "productId": body.id,
        "quantity": body.quantity,
        "variationId": body.variation_id,
        "addons_configuration": configuration,
    })

    base_price = await _catalogue_price(body.id, body.variation_id)

    try:
        upstream = await store_client.add_item(payload, session)
    except WooApiError as e:
        raise _upstream_error(e)

    store_cart = upstream.data if isinstance(upstream.data, dict) else {}
    if not store_cart.get("items"):
        logger.error("Add-item succeeded but the cart is empty; addons_configuration was likely rejected")

    session_id = cache_session(session, upstream)
    key = _added_item_key(store_cart, body.variation_id or body.id, addon_cache.items_for(session_id))
    if key and (cart_addons or base_price is not None):
        addon_cache.set_item(session_id, key, cart_addons, base_price=base_price, product_id=body.id)
        logger.info(f"Cached {len(cart_addons)} add-ons for cart item {key}")

    return _cart_response(session, upstream)


@app.post("/api/cart/update-item")
async def update_item(body: UpdateItemRequest, request: Request):
    session = _store_session(request)
    try:
        upstream = await store_client.update_item(body.key, body.quantity, session)
    except WooApiError as e:
        raise _upstream_error(e)
    return _cart_response(session, upstream)


@app.post("/api/cart/remove-item")
async def remove_item(body: RemoveItemRequest, request: Request):
    session = _store_session(request)
    try:
        upstream = await store_client.remove_item(body.key, session)
    except WooApiError as e:
        raise _upstream_error(e)
    addon_cache.remove_item(cache_session(session, upstream), body.key)
    return _cart_response(session, upstream)


@app.delete("/api/cart/remove-items")
async def remove_items(request: Request):
    """Empty the cart"""
    session = _store_session(request)
    try:
        cleared = await store_client.remove_items(session)
        upstream = await store_client.get_cart(session)
    except WooApiError as e:
        raise _upstream_error(e)
    if not upstream.set_cookie:
        upstream.set_cookie = cleared.set_cookie
    addon_cache.clear(cache_session(session, upstream))
    return _cart_response(session, upstream)


@app.post("/api/cart/apply-coupon")
async def apply_coupon(body: CouponRequest, request: Request):
    session = _store_session(request)
    try:
        upstream = await store_client.apply_coupon(body.code, session)
    except WooApiError as e:
        raise _upstream_error(e)
    return _cart_response(session, upstream)


@app.post("/api/cart/remove-coupon")
async def remove_coupon(body: CouponRequest, request: Request):
    session = _store_session(request)
    try:
        upstream = await store_client.remove_coupon(body.code, session)
    except WooApiError as e:
        raise _upstream_error(e)
    return _cart_response(session, upstream)


@app.post("/api/cart/select-shipping")
async def select_shipping(body: ShippingRequest, request: Request):
    session = _store_session(request)
    try:
        upstream = await store_client.select_shipping_rate(body.package_id, body.rate_id, session)
    except WooApiError as e:
        raise _upstream_error(e)
    return _cart_response(session, upstream)


@app.post("/api/cart/update-customer")
async def update_cart_customer(body: CustomerUpdateRequest, request: Request):
    """Set the cart's billing/shipping addresses so shipping rates can be quoted"""
    session = _store_session(request)
    addresses = body.addresses()
    try:
        upstream = await store_client.update_customer(
            billing_address=addresses.get("billing"),
            shipping_address=addresses.get("shipping"),
            session=session,
        )
    except WooApiError as e:
        raise _upstream_error(e)
    return _cart_response(session, upstream)

# -----------------------------------------------------------------------------
# CUSTOMERS
# -----------------------------------------------------------------------------

@app.get("/api/customers/me")
async def get_me(request: Request):
    customer_id = _customer_id(request)
    try:
        customer = await rest_client.get_customer(customer_id)
    except WooApiError as e:
        raise _upstream_error(e)
    return {"success": True, "customer": customer}


@app.get("/api/customers/orders")
async def get_my_orders(request: Request, status: Optional[str] = None):
    customer_id = _customer_id(request)
    try:
        orders = await rest_client.get_customer_orders(customer_id, per_page=100, status=status)
    except WooApiError as e:
        raise _upstream_error(e)
    return {"success": True, "orders": orders}


@app.put("/api/customers/update")
async def update_me(body: CustomerUpdateRequest, request: Request):
    customer_id = _customer_id(request)
    addresses = body.addresses()
    if not addresses:
        raise HTTPException(status_code=400, detail={"code": "nothing_to_update", "message": "No billing or shipping address given"})
    try:
        customer = await rest_client.update_customer(customer_id, addresses)
    except WooApiError as e:
        raise _upstream_error(e)
    return {"success": True, "customer": customer}

# -----------------------------------------------------------------------------
# ORDERS
# -----------------------------------------------------------------------------

@app.post("/api/orders/create")
async def create_order(payload: Dict[str, Any]):
    """Create a wc/v3 order from a ready-made payload"""
    try:
        return await rest_client.create_order(payload)
    except WooApiError as e:
        raise _upstream_error(e)


@app.get("/api/orders/{order_id}")
async def get_order(order_id: int, order_key: Optional[str] = None):
    try:
        return await rest_client.get_order(order_id, order_key=order_key)
    except WooApiError as e:
        raise _upstream_error(e)


@app.post("/api/checkout")
async def checkout(body: CheckoutInput, request: Request):
    """
    Place an order for the live cart.

    Lines are priced base + add-ons (from the response, else the cache);
    the Store API cart and the cached add-ons are cleared once the order exists.
    """
    session = _store_session(request)
    try:
        upstream = await store_client.get_cart(session)
    except WooApiError as e:
        raise _upstream_error(e)

    session_id = cache_session(session, upstream)
    cart = transform_cart(upstream.data if isinstance(upstream.data, dict) else {}, addon_cache.items_for(session_id))

    try:
        payload = build_order_payload(cart, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "empty_cart", "message": str(e)})

    try:
        order = await rest_client.create_order(payload)
    except WooApiError as e:
        raise _upstream_error(e)

    try:
        cleared = await store_client.remove_items(session)
    except WooApiError as e:
        # The order exists; a stale cart is not worth failing the checkout for
        logger.error(f"Order {order.get('id')} created but the cart could not be emptied: {e.message}")
        cleared = upstream
    addon_cache.clear(session_id)

    return _respond({
        "order": order,
        "orderId": order.get("id"),
        "orderKey": order.get("order_key"),
        "total": order.get("total"),
        "expectedTotal": cart["addonTotals"]["total"],
    }, cleared)

# -----------------------------------------------------------------------------
# PRODUCTS
# -----------------------------------------------------------------------------

@app.get("/api/products")
async def list_products(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None
):
    try:
        result = await rest_client.list_products(page=page, per_page=per_page, category=category, search=search)
    except WooApiError as e:
        raise _upstream_error(e)
    return {
        "products": [transform_product(p) for p in result["products"]],
        "total": result["total"],
        "totalPages": result["total_pages"],
        "page": page,
    }


@app.get("/api/categories")
async def list_categories():
    try:
        return await rest_client.list_categories()
    except WooApiError as e:
        raise _upstream_error(e)


@app.get("/api/products/{slug}")
async def get_product(slug: str):
    """Product by slug or numeric id"""
    try:
        product = await rest_client.get_product(slug)
    except WooApiError as e:
        raise _upstream_error(e)
    if not product:
        raise HTTPException(status_code=404, detail={"code": "product_not_found", "message": f"Product not found: {slug}"})
    return transform_product(product)


@app.get("/api/products/{product_id}/variations")
async def get_variations(product_id: int):
    try:
        parent = await rest_client.get_product(product_id)
        variations = await rest_client.get_variations(product_id)
    except WooApiError as e:
        raise _upstream_error(e)
    return {"variations": [transform_variation(v, parent) for v in variations]}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
