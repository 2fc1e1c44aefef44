#!/usr/bin/env python3
"""
Woo Client: HTTP clients for WooCommerce
==========================================
Two surfaces:
- Store API (/wp-json/wc/store/v1): the shopper's cart. Session travels in
  cookies or the Cart-Token header; every mutation needs a nonce.
- wc/v3 (/wp-json/wc/v3): catalogue and orders, authenticated with
  consumer_key / consumer_secret query parameters.
"""

import os
import json
import base64
import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Optional, Dict, Any, List
from urllib.parse import unquote

import httpx
from pydantic import BaseModel

logger = logging.getLogger("woo-client")

# =============================================================================
# CONFIGURATION
# =============================================================================

WOO_STORE_API_URL = os.getenv("WOO_STORE_API_URL", "http://localhost/wp-json/wc/store/v1")
WOO_REST_API_URL = os.getenv("WOO_REST_API_URL", "http://localhost/wp-json/wc/v3")
WOO_CONSUMER_KEY = os.getenv("WOO_CONSUMER_KEY", "")
WOO_CONSUMER_SECRET = os.getenv("WOO_CONSUMER_SECRET", "")
WOO_TIMEOUT = float(os.getenv("WOO_TIMEOUT", "30"))

NONCE_HEADERS = ("Nonce", "X-WC-Store-API-Nonce", "X-WooCommerce-Nonce")
SESSION_COOKIE_PREFIX = "wp_woocommerce_session_"

# =============================================================================
# ERRORS / MODELS
# =============================================================================

class WooApiError(Exception):
    """WooCommerce answered with an error, or could not be reached"""

    def __init__(self, message: str, code: str = "http_error", status: int = 500, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status
        self.data = data

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


def error_from_response(response: httpx.Response, fallback: str) -> WooApiError:
    """Parse a WooCommerce {code, message, data} error body"""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict) and body.get("message"):
        return WooApiError(
            body["message"],
            code=body.get("code") or "http_error",
            status=response.status_code,
            data=body.get("data"),
        )
    return WooApiError(
        response.text or fallback,
        code="http_error",
        status=response.status_code,
    )


class StoreSession(BaseModel):
    """Shopper session forwarded to the Store API"""
    cookie: str = ""
    cart_token: Optional[str] = None


class StoreResponse(BaseModel):
    """Store API body plus the session headers the caller must hand back to the browser"""
    data: Any = None
    set_cookie: List[str] = []
    cart_token: Optional[str] = None
    nonce: Optional[str] = None


def _no_cookie_jar() -> CookieJar:
    """The client is shared by every shopper, so it must never keep a session cookie"""
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


def extract_nonce(response: httpx.Response, body: Any = None) -> Optional[str]:
    for header in NONCE_HEADERS:
        value = response.headers.get(header)
        if value:
            return value

    if isinstance(body, dict):
        extensions = body.get("extensions") or {}
        if isinstance(extensions, dict):
            store = extensions.get("woocommerce/store") or {}
            nonce = (store.get("nonce") if isinstance(store, dict) else None) or extensions.get("nonce")
            if nonce:
                return nonce
    return None


def cart_token_customer(token: Optional[str]) -> Optional[str]:
    """
    Session id inside a Store API Cart-Token.

    The token is a JWT that WooCommerce re-issues (new exp) on every
    response; its user_id claim is the session's customer id and stays put.
    The signature is not checked: the id is only used as a cache key.
    """
    parts = (token or "").split(".")
    if len(parts) != 3:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(parts[1] + "=" * (-len(parts[1]) % 4)))
    except ValueError:
        return None
    if not isinstance(payload, dict) or payload.get("user_id") in (None, ""):
        return None
    return str(payload["user_id"])


def session_cookie_customer(header: Optional[str]) -> Optional[str]:
    """Customer id from a wp_woocommerce_session_* cookie (customer_id||expiration||expiring||hash)"""
    for part in (header or "").split(";"):
        name, _, value = part.strip().partition("=")
        if name.startswith(SESSION_COOKIE_PREFIX) and value:
            customer = unquote(value).split("||")[0]
            if customer:
                return customer
    return None


# =============================================================================
# STORE API CLIENT
# =============================================================================

class StoreApiClient:
    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.base_url = (base_url or WOO_STORE_API_URL).rstrip("/")
        self.timeout = timeout or WOO_TIMEOUT
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self.transport,
                cookies=_no_cookie_jar(),
            )
        return self._client

    async def close(self):
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self, session: Optional[StoreSession], nonce: str = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if session and session.cookie:
            headers["Cookie"] = session.cookie
        if session and session.cart_token:
            headers["Cart-Token"] = session.cart_token
        if nonce:
            headers["Nonce"] = nonce
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        session: Optional[StoreSession] = None,
        nonce: str = None,
        json: Dict = None
    ) -> StoreResponse:
        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(session, nonce),
                json=json,
            )
        except httpx.HTTPError as e:
            logger.error(f"Store API {method} {path} failed: {e}")
            raise WooApiError(f"Store API unreachable: {e}", code="network_error", status=502)

        if response.is_error:
            error = error_from_response(response, f"Store API {method} {path} failed")
            logger.error(f"Store API {method} {path} -> {response.status_code} {error.code}: {error.message}")
            raise error

        try:
            body = response.json() if response.content else None
        except ValueError:
            raise WooApiError(
                f"Store API {method} {path} returned invalid JSON",
                code="invalid_response",
                status=502,
            )

        return StoreResponse(
            data=body,
            set_cookie=response.headers.get_list("set-cookie"),
            cart_token=response.headers.get("Cart-Token"),
            nonce=extract_nonce(response, body),
        )

    async def _mutate(
        self,
        method: str,
        path: str,
        session: Optional[StoreSession] = None,
        json: Dict = None
    ) -> StoreResponse:
        """Fetch a nonce with GET /cart, then send the mutation in the same session"""
        session = session or StoreSession()
        handshake = None
        try:
            handshake = await self._send("GET", "/cart", session)
        except WooApiError as e:
            logger.warning(f"Could not fetch nonce, proceeding without one: {e.message}")

        nonce = handshake.nonce if handshake else None
        if handshake and not nonce:
            logger.warning("No nonce in Store API response, proceeding without one")

        # A brand new session is only known after the handshake
        if handshake and handshake.cart_token and not session.cart_token:
            session = StoreSession(cookie=session.cookie, cart_token=handshake.cart_token)

        result = await self._send(method, path, session, nonce=nonce, json=json)

        if handshake:
            if not result.set_cookie:
                result.set_cookie = handshake.set_cookie
            if not result.cart_token:
                result.cart_token = session.cart_token
        return result

    # =========================================================================
    # CART
    # =========================================================================

    async def get_cart(self, session: Optional[StoreSession] = None) -> StoreResponse:
        return await self._send("GET", "/cart", session)

    async def fetch_nonce(self, session: Optional[StoreSession] = None) -> Optional[str]:
        """Nonce from the Nonce headers, falling back to extensions['woocommerce/store']"""
        response = await self.get_cart(session)
        return response.nonce

    async def add_item(self, body: Dict, session: Optional[StoreSession] = None) -> StoreResponse:
        logger.info(
            f"Adding product {body.get('id')} x{body.get('quantity')} "
            f"with {len(body.get('addons_configuration') or {})} add-ons"
        )
        return await self._mutate("POST", "/cart/add-item", session, json=body)

    async def update_item(self, key: str, quantity: int, session: Optional[StoreSession] = None) -> StoreResponse:
        return await self._mutate("POST", "/cart/update-item", session, json={"key": key, "quantity": quantity})

    async def remove_item(self, key: str, session: Optional[StoreSession] = None) -> StoreResponse:
        return await self._mutate("POST", "/cart/remove-item", session, json={"key": key})

    async def remove_items(self, session: Optional[StoreSession] = None) -> StoreResponse:
        """Empty the cart; the Store API answers with an empty item list, not a cart"""
        return await self._mutate("DELETE", "/cart/items", session)

    async def apply_coupon(self, code: str, session: Optional[StoreSession] = None) -> StoreResponse:
        return await self._mutate("POST", "/cart/apply-coupon", session, json={"code": code})

    async def remove_coupon(self, code: str, session: Optional[StoreSession] = None) -> StoreResponse:
        return await self._mutate("POST", "/cart/remove-coupon", session, json={"code": code})

    async def select_shipping_rate(
        self,
        package_id: Any,
        rate_id: str,
        session: Optional[StoreSession] = None
    ) -> StoreResponse:
        return await self._mutate(
            "POST",
            "/cart/select-shipping-rate",
            session,
            json={"package_id": package_id, "rate_id": rate_id},
        )

    async def update_customer(
        self,
        billing_address: Dict = None,
        shipping_address: Dict = None,
        session: Optional[StoreSession] = None
    ) -> StoreResponse:
        body = {}
        if billing_address:
            body["billing_address"] = billing_address
        if shipping_address:
            body["shipping_address"] = shipping_address
        return await self._mutate("POST", "/cart/update-customer", session, json=body)


# =============================================================================
# WC/V3 REST CLIENT
# =============================================================================

class WooRestClient:
    def __init__(
        self,
        base_url: str = None,
        consumer_key: str = None,
        consumer_secret: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None
    ):
        self.base_url = (base_url or WOO_REST_API_URL).rstrip("/")
        self.consumer_key = consumer_key if consumer_key is not None else WOO_CONSUMER_KEY
        self.consumer_secret = consumer_secret if consumer_secret is not None else WOO_CONSUMER_SECRET
        self.timeout = timeout or WOO_TIMEOUT
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        return self._client

    async def close(self):
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def configured(self) -> bool:
        return bool(self.consumer_key and self.consumer_secret)

    def _auth_params(self) -> Dict[str, str]:
        if not self.configured:
            raise WooApiError(
                "WooCommerce API credentials are not configured",
                code="missing_credentials",
                status=500,
            )
        return {"consumer_key": self.consumer_key, "consumer_secret": self.consumer_secret}

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict = None,
        json: Dict = None
    ) -> httpx.Response:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        query.update(self._auth_params())

        client = await self._get_client()
        try:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                params=query,
                json=json,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            # Never log the request URL: it carries consumer_secret
            logger.error(f"wc/v3 {method} {path} failed: {type(e).__name__}")
            raise WooApiError("WooCommerce REST API unreachable", code="network_error", status=502)

        if response.is_error:
            error = error_from_response(response, f"wc/v3 {method} {path} failed")
            logger.error(f"wc/v3 {method} {path} -> {response.status_code} {error.code}: {error.message}")
            raise error
        return response

    def _parse(self, response: httpx.Response, method: str, path: str) -> Any:
        try:
            return response.json()
        except ValueError:
            raise WooApiError(f"wc/v3 {method} {path} returned invalid JSON", code="invalid_response", status=502)

    async def _json(self, method: str, path: str, params: Dict = None, json: Dict = None) -> Any:
        response = await self._request(method, path, params=params, json=json)
        return self._parse(response, method, path)

    # =========================================================================
    # PRODUCTS
    # =========================================================================

    async def list_products(self, page: int = 1, per_page: int = 20, **filters) -> Dict[str, Any]:
        """One page of products plus the X-WP-Total pagination headers"""
        params = {"page": page, "per_page": per_page, "context": "view", **filters}
        response = await self._request("GET", "/products", params=params)
        products = self._parse(response, "GET", "/products")
        return {
            "products": products if isinstance(products, list) else [],
            "total": int(response.headers.get("X-WP-Total") or 0),
            "total_pages": int(response.headers.get("X-WP-TotalPages") or 0),
        }

    async def get_product(self, slug_or_id: Any) -> Optional[Dict]:
        """Numeric values are ids, anything else is a slug; None when not found"""
        text = str(slug_or_id)
        if text.isdigit():
            try:
                return await self._json("GET", f"/products/{text}", params={"context": "view"})
            except WooApiError as e:
                if e.status == 404:
                    return None
                raise

        products = await self._json("GET", "/products", params={"slug": text, "context": "view"})
        if isinstance(products, list) and products:
            return products[0]
        return None

    async def get_variations(self, product_id: int, per_page: int = 100) -> List[Dict]:
        variations = await self._json(
            "GET",
            f"/products/{product_id}/variations",
            params={"per_page": per_page},
        )
        return variations if isinstance(variations, list) else []

    async def get_product_addons(self, product_id: int) -> List[Dict]:
        """The Product Add-Ons plugin exposes the schema on the product itself"""
        product = await self.get_product(product_id)
        if not product:
            raise WooApiError(f"Product not found: {product_id}", code="product_not_found", status=404)
        return product.get("addons") or []

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, payload: Dict) -> Dict:
        line_items = payload.get("line_items") or []
        logger.info(
            f"Creating order: {len(line_items)} line items, "
            f"payment {payload.get('payment_method')}, "
            f"{sum(1 for i in line_items if i.get('meta_data'))} with add-ons"
        )
        order = await self._json("POST", "/orders", json=payload)
        logger.info(f"Order {order.get('id')} created, total {order.get('total')}, status {order.get('status')}")
        return order

    async def get_order(self, order_id: int, order_key: str = None) -> Dict:
        """Fetch an order; with order_key the key must match"""
        order = await self._json("GET", f"/orders/{order_id}", params={"order_key": order_key})
        if order_key and order.get("order_key") != order_key:
            raise WooApiError("Invalid order key", code="invalid_order_key", status=403)
        return order

    async def get_customer_orders(
        self,
        customer_id: int,
        page: int = 1,
        per_page: int = 10,
        status: str = None
    ) -> List[Dict]:
        """Newest first"""
        orders = await self._json(
            "GET",
            "/orders",
            params={
                "customer": customer_id,
                "page": page,
                "per_page": per_page,
                "status": status,
                "orderby": "date",
                "order": "desc",
            },
        )
        return orders if isinstance(orders, list) else []

    # =========================================================================
    # CUSTOMERS / CATEGORIES
    # =========================================================================

    async def get_customer(self, customer_id: int) -> Dict:
        return await self._json("GET", f"/customers/{customer_id}")

    async def update_customer(self, customer_id: int, payload: Dict) -> Dict:
        logger.info(f"Updating customer {customer_id}: {', '.join(sorted(payload)) or 'nothing'}")
        return await self._json("PUT", f"/customers/{customer_id}", json=payload)

    async def list_categories(self, per_page: int = 100, hide_empty: bool = True) -> List[Dict]:
        """Product categories, most populated first"""
        categories = await self._json(
            "GET",
            "/products/categories",
            params={
                "per_page": per_page,
                "hide_empty": "true" if hide_empty else "false",
                "orderby": "count",
                "order": "desc",
            },
        )
        return categories if isinstance(categories, list) else []
