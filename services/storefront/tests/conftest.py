"""
Fixtures for storefront tests.

WooCommerce is replaced by FakeWoo behind httpx.MockTransport: a tiny Store API
cart (minor units, nonce-checked mutations, Cart-Token session) plus a wc/v3
catalogue and order store.
"""

import base64
import json
import os
import tempfile

os.environ.setdefault("STOREFRONT_DATA_DIR", tempfile.mkdtemp(prefix="storefront-test-"))
os.environ.setdefault("WOO_CONSUMER_KEY", "ck_test")
os.environ.setdefault("WOO_CONSUMER_SECRET", "cs_test")

import httpx
import pytest
from fastapi.testclient import TestClient

STORE_URL = "http://woo.test/wp-json/wc/store/v1"
REST_URL = "http://woo.test/wp-json/wc/v3"

NONCE = "nonce-123"
CUSTOMER_ID = "t_5e1c9b2a7f"


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


def make_cart_token(customer_id: str = CUSTOMER_ID, exp: int = 1700172800) -> str:
    """Store API Cart-Token: an HS256 JWT whose user_id is the session customer id"""
    header = _b64({"alg": "HS256", "typ": "JWT"})
    payload = _b64({"user_id": customer_id, "exp": exp, "iss": "store-api"})
    return f"{header}.{payload}.c2lnbmF0dXJl"


CART_TOKEN = make_cart_token()
SESSION_COOKIE = (
    f"wp_woocommerce_session_abc={CUSTOMER_ID}%7C%7C1700172800%7C%7C1700169200%7C%7Cd41d8cd98f; "
    "path=/; HttpOnly"
)
# Add-on cache namespace for the FakeWoo shopper
CACHE_SESSION = CUSTOMER_ID

HEATER_ADDONS = [
    {
        "id": 11,
        "name": "Coverage",
        "type": "multiple_choice",
        "required": True,
        "options": [
            {"label": "Half", "price": "", "price_type": "flat_fee"},
            {"label": "Full", "price": "1290.00", "price_type": "flat_fee"},
        ],
    },
    {
        "id": 12,
        "name": "Extras",
        "type": "checkbox",
        "options": [
            {"label": "Zipper", "price": "60.00"},
            {"label": "Strap", "price": "15.50"},
        ],
    },
    {"id": 13, "name": "Engraving", "type": "custom_text", "max": 20},
]

HEATER = {
    "id": 42,
    "name": "Drum Heater",
    "slug": "drum-heater",
    "type": "simple",
    "sku": "DH-42",
    "price": "585.00",
    "regular_price": "585.00",
    "sale_price": "",
    "stock_status": "instock",
    "images": [{"id": 1, "src": "http://woo.test/heater.jpg", "name": "heater", "alt": ""}],
    "categories": [{"id": 5, "name": "Heaters", "slug": "heaters"}],
    "addons": HEATER_ADDONS,
}

BLANKET = {
    "id": 50,
    "name": "Blanket",
    "slug": "blanket",
    "type": "variable",
    "price": "100.00",
    "regular_price": "100.00",
    "variations": [51],
    "attributes": [{"id": 1, "name": "Size", "options": ["Small", "Large"], "variation": True, "visible": True}],
    "addons": [],
}

BLANKET_LARGE = {
    "id": 51,
    "sku": "BL-L",
    "price": "120.00",
    "regular_price": "120.00",
    "permalink": "http://woo.test/product/blanket/?attribute_size=Large",
    "attributes": [{"id": 1, "name": "Size", "option": "Large"}],
}


def store_item(key, product_id, price_cents, quantity=1, name="Drum Heater", **extra):
    """A Store API cart item; prices in minor units"""
    item = {
        "key": key,
        "id": product_id,
        "quantity": quantity,
        "name": name,
        "sku": "DH-42",
        "permalink": "http://woo.test/product/drum-heater/",
        "images": [],
        "variation": [],
        "prices": {
            "price": str(price_cents),
            "regular_price": str(price_cents),
            "sale_price": str(price_cents),
            "currency_minor_unit": 2,
            "currency_symbol": "$",
        },
        "totals": {
            "line_subtotal": str(price_cents * quantity),
            "line_total": str(price_cents * quantity),
            "line_subtotal_tax": "0",
            "line_total_tax": "0",
            "currency_minor_unit": 2,
        },
        "item_data": [],
        "extensions": {},
    }
    item.update(extra)
    return item


def store_cart(items, discount=0, shipping=0, tax=0, **extra):
    """A Store API cart whose totals follow its items"""
    items_total = sum(int(i["totals"]["line_subtotal"]) for i in items)
    cart = {
        "items": items,
        "items_count": sum(i["quantity"] for i in items),
        "coupons": [],
        "shipping_rates": [],
        "totals": {
            "total_items": str(items_total),
            "total_discount": str(discount),
            "total_shipping": str(shipping),
            "total_tax": str(tax),
            "total_price": str(items_total - discount + shipping + tax),
            "currency_minor_unit": 2,
            "currency_symbol": "$",
        },
    }
    cart.update(extra)
    return cart


class FakeWoo:
    """In-memory WooCommerce answering Store API and wc/v3 requests"""

    def __init__(self):
        self.products = {HEATER["id"]: HEATER, BLANKET["id"]: BLANKET}
        self.variations = {BLANKET["id"]: [BLANKET_LARGE]}
        self.items = []
        self.coupons = []
        self.orders = {}
        self.categories = [
            {"id": 15, "name": "Heaters", "slug": "heaters", "count": 12},
            {"id": 16, "name": "Blankets", "slug": "blankets", "count": 4},
        ]
        self.customers = {7: {"id": 7, "email": "ada@example.com", "billing": {"first_name": "Ada", "city": "Leeds"}}}
        self.customer = {}
        self.requests = []
        self.next_key = 1
        # Product Add-Ons plugin behaviour
        self.echo_addons = False
        self.price_includes_addons = False
        self.fail_store = False
        # WooCommerce re-issues the Cart-Token (new exp) on every response
        self.rotate_tokens = False
        self.responses = 0

    # -- helpers ---------------------------------------------------------------

    def _json(self, request):
        return json.loads(request.content) if request.content else {}

    def _store_headers(self):
        self.responses += 1
        token = make_cart_token(exp=1700172800 + self.responses) if self.rotate_tokens else CART_TOKEN
        return [
            ("Nonce", NONCE),
            ("Cart-Token", token),
            ("Set-Cookie", SESSION_COOKIE),
        ]

    def _cart(self):
        cart = store_cart(self.items)
        cart["coupons"] = [
            {"code": code, "totals": {"total_discount": "0", "total_discount_tax": "0"}}
            for code in self.coupons
        ]
        cart.update(self.customer)
        return cart

    def _addon_labels(self, product, config):
        """item_data as the plugin renders it: "Full (+ $1,290.00)" """
        item_data, extra_cents = [], 0
        for addon in product.get("addons") or []:
            value = config.get(str(addon["id"]))
            if value is None:
                continue
            picks = value if isinstance(value, list) else [value]
            for pick in picks:
                if isinstance(pick, int) and addon.get("options"):
                    option = addon["options"][pick]
                    price = float(option.get("price") or 0)
                    label = option["label"]
                else:
                    price, label = 0.0, str(pick)
                extra_cents += int(round(price * 100))
                shown = f"{label} (+ &#36;{price:,.2f})" if price else label
                item_data.append({"name": addon["name"], "value": shown, "display": ""})
        return item_data, extra_cents

    # -- Store API -------------------------------------------------------------

    def store(self, request, path):
        if self.fail_store:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method != "GET" and request.headers.get("Nonce") != NONCE:
            return httpx.Response(401, json={
                "code": "woocommerce_rest_missing_nonce",
                "message": "Missing the Nonce header.",
                "data": {"status": 401},
            })

        body = self._json(request)

        if path == "/cart/add-item":
            product_id = body["id"]
            product = self.products.get(product_id)
            if not product:
                return httpx.Response(400, json={
                    "code": "woocommerce_rest_cart_invalid_product",
                    "message": "This product cannot be added to the cart.",
                    "data": {"status": 400},
                })
            variation = body.get("variation") or []
            item_id, price = product_id, product["price"]
            if variation:
                item_id = int(variation[0]["value"])
                price = next(v["price"] for v in self.variations[product_id] if v["id"] == item_id)
            config = body.get("addons_configuration") or {}
            item_data, extra_cents = self._addon_labels(product, config)
            cents = int(round(float(price) * 100)) + (extra_cents if self.price_includes_addons else 0)
            item = store_item(
                f"key-{self.next_key}",
                item_id,
                cents,
                quantity=body.get("quantity", 1),
                name=product["name"],
                item_data=item_data if self.echo_addons else [],
            )
            item["_addons_configuration"] = config
            self.next_key += 1
            self.items.append(item)
        elif path == "/cart/update-item":
            for item in self.items:
                if item["key"] == body["key"]:
                    price = int(item["prices"]["price"])
                    item["quantity"] = body["quantity"]
                    item["totals"]["line_subtotal"] = str(price * body["quantity"])
                    item["totals"]["line_total"] = str(price * body["quantity"])
        elif path == "/cart/remove-item":
            self.items = [i for i in self.items if i["key"] != body["key"]]
        elif path == "/cart/items" and request.method == "DELETE":
            self.items = []
            return httpx.Response(200, json=[], headers=self._store_headers())
        elif path == "/cart/apply-coupon":
            if body["code"] != "SAVE10":
                return httpx.Response(400, json={
                    "code": "woocommerce_rest_cart_coupon_error",
                    "message": f'Coupon "{body["code"]}" does not exist!',
                    "data": {"status": 400},
                })
            self.coupons.append(body["code"])
        elif path == "/cart/remove-coupon":
            self.coupons = [c for c in self.coupons if c != body["code"]]
        elif path == "/cart/update-customer":
            self.customer.update(body)

        return httpx.Response(200, json=self._cart(), headers=self._store_headers())

    # -- wc/v3 -----------------------------------------------------------------

    def rest(self, request, path):
        params = request.url.params
        if params.get("consumer_key") != "ck_test" or params.get("consumer_secret") != "cs_test":
            return httpx.Response(401, json={
                "code": "woocommerce_rest_cannot_view",
                "message": "Sorry, you cannot list resources.",
                "data": {"status": 401},
            })

        parts = [p for p in path.split("/") if p]

        if parts == ["products", "categories"]:
            return httpx.Response(200, json=self.categories)

        if parts[0] == "customers" and len(parts) == 2:
            customer = self.customers.get(int(parts[1]))
            if not customer:
                return httpx.Response(404, json={
                    "code": "woocommerce_rest_invalid_id",
                    "message": "Invalid resource ID.",
                    "data": {"status": 404},
                })
            if request.method == "PUT":
                for field, value in self._json(request).items():
                    if isinstance(value, dict) and isinstance(customer.get(field), dict):
                        customer[field].update(value)
                    else:
                        customer[field] = value
            return httpx.Response(200, json=customer)

        if parts == ["products"] and request.method == "GET":
            products = list(self.products.values())
            if params.get("slug"):
                products = [p for p in products if p["slug"] == params["slug"]]
            return httpx.Response(200, json=products, headers={
                "X-WP-Total": str(len(products)),
                "X-WP-TotalPages": "1",
            })

        if parts[0] == "products" and len(parts) == 2:
            product = self.products.get(int(parts[1]))
            if not product:
                return httpx.Response(404, json={
                    "code": "woocommerce_rest_product_invalid_id",
                    "message": "Invalid ID.",
                    "data": {"status": 404},
                })
            return httpx.Response(200, json=product)

        if parts[0] == "products" and parts[-1] == "variations":
            return httpx.Response(200, json=self.variations.get(int(parts[1]), []))

        if parts == ["orders"] and request.method == "POST":
            payload = self._json(request)
            order_id = 100 + len(self.orders) + 1
            total = sum(float(i["total"]) for i in payload["line_items"])
            order = {
                **payload,
                "id": order_id,
                "order_key": f"wc_order_{order_id}",
                "total": f"{total:.2f}",
            }
            self.orders[order_id] = order
            return httpx.Response(201, json=order)

        if parts == ["orders"] and request.method == "GET":
            orders = [
                o for o in self.orders.values()
                if str(o.get("customer_id")) == params.get("customer")
                and (not params.get("status") or o.get("status") == params["status"])
            ]
            return httpx.Response(200, json=orders)

        if parts[0] == "orders" and len(parts) == 2:
            order = self.orders.get(int(parts[1]))
            if not order:
                return httpx.Response(404, json={
                    "code": "woocommerce_rest_shop_order_invalid_id",
                    "message": "Invalid ID.",
                    "data": {"status": 404},
                })
            return httpx.Response(200, json=order)

        return httpx.Response(404, text="Not Found")

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/wp-json/wc/store/v1"):
            return self.store(request, path[len("/wp-json/wc/store/v1"):])
        if path.startswith("/wp-json/wc/v3"):
            return self.rest(request, path[len("/wp-json/wc/v3"):])
        return httpx.Response(404, text="Not Found")


@pytest.fixture
def woo():
    return FakeWoo()


@pytest.fixture
def transport(woo):
    return httpx.MockTransport(woo.handle)


@pytest.fixture
def store_client(transport):
    from woo_client import StoreApiClient

    return StoreApiClient(base_url=STORE_URL, transport=transport)


@pytest.fixture
def rest_client(transport):
    from woo_client import WooRestClient

    return WooRestClient(base_url=REST_URL, consumer_key="ck_test", consumer_secret="cs_test", transport=transport)


@pytest.fixture
def addon_cache(tmp_path):
    from woostore.cache import AddonCache

    return AddonCache(tmp_path)


@pytest.fixture
def test_client(monkeypatch, store_client, rest_client, addon_cache):
    """
    TestClient for the storefront app wired to FakeWoo.
    """
    import storefront

    monkeypatch.setattr(storefront, "store_client", store_client)
    monkeypatch.setattr(storefront, "rest_client", rest_client)
    monkeypatch.setattr(storefront, "addon_cache", addon_cache)

    with TestClient(storefront.app) as client:
        yield client
