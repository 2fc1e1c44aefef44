"""
woostore: WooCommerce add-on and cart reconciliation
=====================================================

Request side:
- addons: product-page selections -> Store API addons_configuration

Response side:
- normalizer: add-ons out of item_data / extensions
- cart: Store API cart -> GraphQL-shaped cart
- products: wc/v3 products -> GraphQL-shaped products

Money:
- prices: minor units, decimal strings, "Label (+ $X.XX)"
- totals: line and cart totals, reconciled against the Store API
- orders: wc/v3 order payload with explicit add-on pricing

State:
- cache: add-ons per session and cart item key
"""

from woostore.addons import AddonSelectionError, format_addons_for_cart, configuration_from_extra_data
from woostore.cache import AddonCache
from woostore.cart import transform_cart, transform_add_to_cart_input
from woostore.models import CartAddon, ProductAddon, SelectedAddon
from woostore.normalizer import extract_addons_from_cart_item
from woostore.orders import CheckoutInput, build_order_payload
from woostore.products import transform_product, transform_variation
from woostore.totals import compute_line_totals, reconcile_cart

__all__ = [
    "AddonSelectionError",
    "format_addons_for_cart",
    "configuration_from_extra_data",
    "AddonCache",
    "transform_cart",
    "transform_add_to_cart_input",
    "CartAddon",
    "ProductAddon",
    "SelectedAddon",
    "extract_addons_from_cart_item",
    "CheckoutInput",
    "build_order_payload",
    "transform_product",
    "transform_variation",
    "compute_line_totals",
    "reconcile_cart",
]
