"""
Component tests for the storefront service

The FastAPI app runs for real; only WooCommerce is faked (FakeWoo behind
httpx.MockTransport). These cover the add-on pipeline end to end:
selection -> addons_configuration -> Store API -> normalized cart -> order.
"""
import json

from fastapi.testclient import TestClient

from conftest import CACHE_SESSION, CART_TOKEN, NONCE

SELECTION = [
    {"fieldName": "Coverage", "label": "Full", "price": 1290},
    {"fieldName": "Extras", "value": ["Zipper"]},
    None,
]


def _addons(node):
    extra = node["extraData"]
    return json.loads(extra[0]["value"]) if extra else []


class TestHealth:
    def test_health(self, test_client: TestClient):
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["rest_credentials"] is True


class TestAddItemWithAddons:
    def test_selected_addons_are_formatted_and_cached(self, test_client: TestClient, woo, addon_cache):
        """
        Test adding a product with add-on selections

        Validates:
        - selections are formatted into addons_configuration
        - the Store API call carries the nonce
        - add-ons are cached against the new item key and session
        - the cart is priced base + add-ons even though the Store API omits them
        """
        # Act
        response = test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "quantity": 2,
            "selectedAddons": SELECTION,
        })

        # Assert
        assert response.status_code == 200
        assert woo.items[0]["_addons_configuration"] == {"11": 1, "12": [0]}
        add_request = next(r for r in woo.requests if r.url.path.endswith("/cart/add-item"))
        assert add_request.headers["Nonce"] == NONCE

        cached = addon_cache.get_item(CACHE_SESSION, "key-1")
        assert cached.base_price == 585.0
        assert [a.value for a in cached.addons] == ["Full", "Zipper"]

        cart = response.json()
        node = cart["contents"]["nodes"][0]
        assert [(a["fieldName"], a["value"], a["price"]) for a in _addons(node)] == [
            ("Coverage", "Full", 1290.0),
            ("Extras", "Zipper", 60.0),
        ]
        assert node["lineTotals"]["subtotal"] == "3870.00"
        assert cart["addonTotals"]["total"] == "3870.00"
        assert cart["addonTotals"]["matchesStore"] is False

    def test_session_headers_are_passed_through(self, test_client: TestClient):
        response = test_client.post("/api/cart/add-item", json={"productId": 42})

        assert response.headers["Cart-Token"] == CART_TOKEN
        assert "wp_woocommerce_session_abc" in response.headers["set-cookie"]

    def test_addons_echoed_and_included_upstream(self, test_client: TestClient, woo):
        """When the plugin both echoes and prices the add-ons, totals agree with the Store API"""
        woo.echo_addons = True
        woo.price_includes_addons = True

        response = test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "quantity": 2,
            "selectedAddons": SELECTION,
        })

        cart = response.json()
        node = cart["contents"]["nodes"][0]
        assert [(a["value"], a["price"]) for a in _addons(node)] == [("Full", 1290.0), ("Zipper", 60.0)]
        assert node["lineTotals"]["addonsIncludedUpstream"] is True
        assert cart["addonTotals"]["total"] == "3870.00"
        assert cart["addonTotals"]["matchesStore"] is True

    def test_legacy_extra_data(self, test_client: TestClient, woo):
        extra = [{"key": "addons", "value": json.dumps([
            {"addonId": 11, "fieldName": "Coverage", "optionIndex": 1, "label": "Full", "value": "Full", "price": 1290},
            {"addonId": 12, "fieldName": "Extras", "optionIndex": 0, "label": "Zipper", "value": "Zipper", "price": 60},
            {"addonId": 12, "fieldName": "Extras", "optionIndex": 1, "label": "Strap", "value": "Strap", "price": 15.5},
        ])}]

        response = test_client.post("/api/cart/add-item", json={"id": 42, "extra_data": extra})

        assert response.status_code == 200
        assert woo.items[0]["_addons_configuration"] == {"11": 1, "12": [0, 1]}
        node = response.json()["contents"]["nodes"][0]
        assert node["lineTotals"]["unitPrice"] == "1950.50"

    def test_legacy_extra_data_prices_come_from_product(self, test_client: TestClient):
        extra = [{"key": "addons", "value": json.dumps([
            {"addonId": 11, "fieldName": "Coverage", "optionIndex": 1, "label": "Full", "price": 0},
            {"addonId": 12, "fieldName": "Extras", "optionIndex": 0, "label": "Zipper", "price": -60},
        ])}]

        response = test_client.post("/api/cart/add-item", json={"id": 42, "extra_data": extra})

        node = response.json()["contents"]["nodes"][0]
        assert [(a["value"], a["price"]) for a in _addons(node)] == [("Full", 1290.0), ("Zipper", 60.0)]
        assert node["lineTotals"]["unitPrice"] == "1935.00"

    def test_posted_prices_cannot_undercut_checkout(self, test_client: TestClient, woo):
        test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "selectedAddons": [{"fieldName": "Coverage", "label": "Full", "value": "Full", "price": 0}],
        })

        response = test_client.post("/api/checkout", json=TestCheckout.CHECKOUT)

        line = woo.orders[response.json()["orderId"]]["line_items"][0]
        assert line["total"] == "1875.00"

    def test_display_prices_and_null_labels_are_accepted(self, test_client: TestClient):
        response = test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "selectedAddons": [
                {"fieldName": "Coverage", "label": "Full", "price": "$1,290.00"},
                {"fieldName": "Extras", "label": None, "value": ["Zipper"]},
                None,
            ],
        })

        assert response.status_code == 200
        assert response.json()["contents"]["nodes"][0]["lineTotals"]["unitPrice"] == "1935.00"

    def test_malformed_selection_is_422(self, test_client: TestClient, woo):
        response = test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "selectedAddons": [{"label": "Full", "price": {"amount": 5}}],
        })

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "invalid_addons"
        assert "price" in detail["message"]
        assert woo.items == []

    def test_ready_made_configuration(self, test_client: TestClient, woo):
        test_client.post("/api/cart/add-item", json={"id": 42, "addons_configuration": {"13": "For Dad"}})
        assert woo.items[0]["_addons_configuration"] == {"13": "For Dad"}

    def test_missing_required_addon_is_422(self, test_client: TestClient, woo):
        response = test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "selectedAddons": [None, {"value": ["Zipper"]}],
        })

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "invalid_addons"
        assert woo.items == []

    def test_unknown_option_is_422(self, test_client: TestClient):
        response = test_client.post("/api/cart/add-item", json={
            "productId": 42,
            "selectedAddons": [{"label": "Quarter"}],
        })
        assert response.status_code == 422

    def test_store_api_error_is_passed_through(self, test_client: TestClient):
        response = test_client.post("/api/cart/add-item", json={"productId": 999})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "woocommerce_rest_cart_invalid_product"

    def test_variation(self, test_client: TestClient, addon_cache):
        response = test_client.post("/api/cart/add-item", json={"productId": 50, "variationId": 51})

        assert response.status_code == 200
        assert addon_cache.get_item(CACHE_SESSION, "key-1").base_price == 120.0


class TestCartOperations:
    def _add(self, client):
        return client.post("/api/cart/add-item", json={"productId": 42, "selectedAddons": SELECTION}).json()

    def test_get_cart_uses_cached_addons(self, test_client: TestClient):
        self._add(test_client)

        cart = test_client.get("/api/cart", headers={"Cart-Token": CART_TOKEN}).json()

        node = cart["contents"]["nodes"][0]
        assert [a["value"] for a in _addons(node)] == ["Full", "Zipper"]
        assert node["lineTotals"]["unitPrice"] == "1935.00"

    def test_update_item_keeps_addons(self, test_client: TestClient):
        self._add(test_client)

        cart = test_client.post("/api/cart/update-item", json={"key": "key-1", "quantity": 3}).json()

        node = cart["contents"]["nodes"][0]
        assert node["quantity"] == 3
        assert node["lineTotals"]["subtotal"] == "5805.00"

    def test_remove_item_drops_cache(self, test_client: TestClient, addon_cache):
        self._add(test_client)

        cart = test_client.post("/api/cart/remove-item", json={"key": "key-1"}).json()

        assert cart["isEmpty"]
        assert addon_cache.get_item(CACHE_SESSION, "key-1") is None

    def test_remove_items_empties_cart_and_cache(self, test_client: TestClient, addon_cache):
        self._add(test_client)
        self._add(test_client)

        response = test_client.delete("/api/cart/remove-items")

        assert response.status_code == 200
        assert response.json()["isEmpty"]
        assert addon_cache.items_for(CACHE_SESSION) == {}

    def test_coupons(self, test_client: TestClient):
        self._add(test_client)

        applied = test_client.post("/api/cart/apply-coupon", json={"code": "SAVE10"}).json()
        assert applied["appliedCoupons"][0]["code"] == "SAVE10"

        removed = test_client.post("/api/cart/remove-coupon", json={"code": "SAVE10"}).json()
        assert removed["appliedCoupons"] == []

        bad = test_client.post("/api/cart/apply-coupon", json={"code": "NOPE"})
        assert bad.status_code == 400
        assert "NOPE" in bad.json()["detail"]["message"]

    def test_select_shipping(self, test_client: TestClient, woo):
        response = test_client.post("/api/cart/select-shipping", json={"package_id": 0, "rate_id": "flat_rate:1"})

        assert response.status_code == 200
        sent = json.loads(woo.requests[-1].content)
        assert sent == {"package_id": 0, "rate_id": "flat_rate:1"}

    def test_update_customer_sends_addresses(self, test_client: TestClient, woo):
        response = test_client.post("/api/cart/update-customer", json={
            "billingAddress": {"firstName": "Ada", "country": "GB"},
            "shippingAddress": {"postcode": "LS1 4AP", "email": "ignored@example.com"},
        })

        assert response.status_code == 200
        assert json.loads(woo.requests[-1].content) == {
            "billing_address": {"first_name": "Ada", "country": "GB"},
            "shipping_address": {"postcode": "LS1 4AP"},
        }

    def test_store_unreachable_is_502(self, test_client: TestClient, woo):
        woo.fail_store = True

        response = test_client.get("/api/cart")

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "network_error"


class TestCheckout:
    CHECKOUT = {
        "billing": {"firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com"},
        "paymentMethod": {"id": "cod", "title": "Request Quote"},
    }

    def test_checkout_prices_addons_and_clears_cart(self, test_client: TestClient, woo, addon_cache):
        """
        Test the order carries add-on pricing the Store API never saw

        Validates:
        - line subtotal/total = (base + add-ons) x quantity
        - add-ons become order meta_data
        - the Store API cart and the add-on cache are emptied
        """
        # Arrange
        test_client.post("/api/cart/add-item", json={"productId": 42, "quantity": 2, "selectedAddons": SELECTION})

        # Act
        response = test_client.post("/api/checkout", json=self.CHECKOUT)

        # Assert
        assert response.status_code == 200
        body = response.json()
        order = woo.orders[body["orderId"]]
        line = order["line_items"][0]
        assert line["subtotal"] == "3870.00"
        assert line["total"] == "3870.00"
        assert [m["display_value"] for m in line["meta_data"]] == ["Full (+$1,290.00)", "Zipper (+$60.00)"]
        assert order["status"] == "pending"
        assert order["billing"]["first_name"] == "Ada"
        assert body["total"] == body["expectedTotal"] == "3870.00"
        assert woo.items == []
        assert addon_cache.items_for(CACHE_SESSION) == {}

    def test_addons_survive_cart_token_rotation(self, test_client: TestClient, woo, addon_cache):
        """
        Test cached add-ons are found again after WooCommerce re-issues the Cart-Token

        Validates:
        - the cache is keyed by the session inside the token, not the token text
        - a later cart read and the checkout both price the add-ons
        """
        # Arrange
        woo.rotate_tokens = True
        added = test_client.post("/api/cart/add-item", json={"productId": 42, "selectedAddons": SELECTION})
        token = added.headers["Cart-Token"]
        test_client.cookies.clear()

        # Act
        cart = test_client.get("/api/cart", headers={"Cart-Token": token})
        test_client.cookies.clear()
        response = test_client.post("/api/checkout", json=self.CHECKOUT, headers={"Cart-Token": cart.headers["Cart-Token"]})

        # Assert
        assert cart.headers["Cart-Token"] != token
        node = cart.json()["contents"]["nodes"][0]
        assert [a["value"] for a in _addons(node)] == ["Full", "Zipper"]
        assert node["lineTotals"]["unitPrice"] == "1935.00"

        order = woo.orders[response.json()["orderId"]]
        assert order["line_items"][0]["total"] == "1935.00"
        assert addon_cache.sessions == {}

    def test_empty_cart_is_400(self, test_client: TestClient):
        response = test_client.post("/api/checkout", json=self.CHECKOUT)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "empty_cart"


class TestOrders:
    def test_create_and_fetch(self, test_client: TestClient):
        created = test_client.post("/api/orders/create", json={
            "line_items": [{"product_id": 42, "quantity": 1, "subtotal": "585.00", "total": "585.00"}],
        }).json()

        fetched = test_client.get(f"/api/orders/{created['id']}", params={"order_key": created["order_key"]})
        assert fetched.status_code == 200
        assert fetched.json()["total"] == "585.00"

        wrong = test_client.get(f"/api/orders/{created['id']}", params={"order_key": "nope"})
        assert wrong.status_code == 403

    def test_unknown_order_is_404(self, test_client: TestClient):
        assert test_client.get("/api/orders/9999").status_code == 404


class TestProducts:
    def test_list(self, test_client: TestClient):
        body = test_client.get("/api/products", params={"per_page": 10}).json()

        assert body["total"] == 2
        assert {p["slug"] for p in body["products"]} == {"drum-heater", "blanket"}

    def test_by_slug_and_id(self, test_client: TestClient):
        by_slug = test_client.get("/api/products/drum-heater").json()
        by_id = test_client.get("/api/products/42").json()

        assert by_slug["databaseId"] == by_id["databaseId"] == 42
        assert by_slug["addons"][0]["fieldName"] == "addon-11"

    def test_not_found(self, test_client: TestClient):
        response = test_client.get("/api/products/nope")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "product_not_found"

    def test_variations(self, test_client: TestClient):
        body = test_client.get("/api/products/50/variations").json()
        assert body["variations"][0]["databaseId"] == 51
        assert body["variations"][0]["price"] == "120.00"

    def test_categories(self, test_client: TestClient):
        response = test_client.get("/api/categories")

        assert response.status_code == 200
        assert [c["slug"] for c in response.json()] == ["heaters", "blankets"]


class TestCustomers:
    def test_requires_customer_cookie(self, test_client: TestClient):
        for method, path in [("GET", "/api/customers/me"), ("GET", "/api/customers/orders"), ("PUT", "/api/customers/update")]:
            response = test_client.request(method, path, json={} if method == "PUT" else None)
            assert response.status_code == 401
            assert response.json()["detail"]["code"] == "not_authenticated"

    def test_me(self, test_client: TestClient):
        test_client.cookies.set("wc-customer-id", "7")

        body = test_client.get("/api/customers/me").json()

        assert body["success"] is True
        assert body["customer"]["email"] == "ada@example.com"

    def test_unknown_customer_is_404(self, test_client: TestClient):
        test_client.cookies.set("wc-customer-id", "999")
        assert test_client.get("/api/customers/me").status_code == 404

    def test_orders_are_scoped_to_customer(self, test_client: TestClient, woo):
        test_client.post("/api/orders/create", json={"customer_id": 7, "line_items": []})
        test_client.post("/api/orders/create", json={"customer_id": 8, "line_items": []})
        test_client.cookies.set("wc-customer-id", "7")

        body = test_client.get("/api/customers/orders").json()

        assert body["success"] is True
        assert [o["customer_id"] for o in body["orders"]] == [7]
        params = woo.requests[-1].url.params
        assert params["per_page"] == "100"
        assert params["orderby"] == "date"

    def test_update_merges_addresses(self, test_client: TestClient, woo):
        test_client.cookies.set("wc-customer-id", "7")

        response = test_client.put("/api/customers/update", json={"billingAddress": {"city": "York"}})

        assert response.status_code == 200
        assert response.json()["customer"]["billing"] == {"first_name": "Ada", "city": "York"}
        assert json.loads(woo.requests[-1].content) == {"billing": {"city": "York"}}

    def test_update_without_addresses_is_400(self, test_client: TestClient):
        test_client.cookies.set("wc-customer-id", "7")

        response = test_client.put("/api/customers/update", json={})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "nothing_to_update"
