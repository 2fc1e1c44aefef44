"""
CART ADD-ON NORMALIZER
======================

Depending on the Product Add-Ons plugin version, a Store API cart item carries
its add-ons in one of:

    item.item_data                     [{"name": "Dish Size", "value": "3.7 (+ $585.00)"}]
    item.extensions.addons             [{"field_name": ..., "field_value": ..., "price_amount": ...}]
    item.extensions["product-add-ons"] list, or {"coverage": {"name": ..., "value": ...}}

All of them are reduced to a list of CartAddon.
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from woostore.models import CartAddon
from woostore.prices import money, parse_price, split_price_label

logger = logging.getLogger("storefront-normalizer")

FIELD_NAME_KEYS = ("name", "field_name", "label", "key")
VALUE_KEYS = ("value", "field_value", "option", "selected", "display")
PRICE_KEYS = ("price", "price_amount", "addon_price")

EXTRA_DATA_KEY = "addons"


def _first(entry: Dict, keys: Iterable[str]) -> Any:
    for key in keys:
        value = entry.get(key)
        if value not in (None, ""):
            return value
    return None


def _is_metadata_only(data: Any) -> bool:
    return isinstance(data, dict) and set(data.keys()) <= {"addons_data"}


def _looks_like_addon(entry: Any) -> bool:
    return isinstance(entry, dict) and any(entry.get(k) not in (None, "") for k in ("name", "field_name", "value"))


def _raw_addon_entries(item: Dict) -> List[Dict]:
    """Pick the first non-empty add-on source, in priority order"""
    item_data = item.get("item_data")
    if isinstance(item_data, list) and item_data:
        return [e for e in item_data if isinstance(e, dict)]

    extensions = item.get("extensions") or {}
    if not isinstance(extensions, dict):
        return []

    for source in ("addons", "product-add-ons"):
        data = extensions.get(source)
        if not data:
            continue
        if isinstance(data, list):
            return [e for e in data if isinstance(e, dict)]
        if _is_metadata_only(data):
            logger.debug(f"extensions[{source!r}] holds metadata only")
            continue
        if isinstance(data, dict):
            entries = [e for e in data.values() if _looks_like_addon(e)]
            if entries:
                return entries

    return []


def normalize_addon_entry(entry: Dict) -> CartAddon:
    """Normalize one raw add-on entry, splitting "Label (+ $X.XX)" values"""
    field_name = str(_first(entry, FIELD_NAME_KEYS) or "Unknown")
    raw_value = _first(entry, VALUE_KEYS)
    value, price = split_price_label("" if raw_value is None else raw_value)

    if not price:
        price = parse_price(_first(entry, PRICE_KEYS))

    return CartAddon(
        field_name=field_name,
        value=value,
        price=money(price),
        label=value or field_name,
    )


def extract_addons_from_cart_item(item: Optional[Dict]) -> List[CartAddon]:
    """Extract the add-ons of a Store API cart item; [] when there are none"""
    if not isinstance(item, dict):
        return []

    addons: List[CartAddon] = []
    seen = set()

    for entry in _raw_addon_entries(item):
        try:
            addon = normalize_addon_entry(entry)
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed add-on on {item.get('name')!r}: {e}")
            continue

        unique_key = (addon.field_name, addon.value)
        if unique_key in seen:
            continue
        seen.add(unique_key)
        addons.append(addon)

    return addons


# =============================================================================
# extraData ENVELOPE
# =============================================================================

def to_extra_data(addons: List[CartAddon]) -> List[Dict[str, str]]:
    """Wrap add-ons in the [{"key": "addons", "value": "<json>"}] envelope"""
    if not addons:
        return []
    payload = [a.model_dump(by_alias=True) for a in addons]
    return [{"key": EXTRA_DATA_KEY, "value": json.dumps(payload)}]


def parse_extra_data(extra_data: Optional[List[Dict]]) -> List[CartAddon]:
    """Inverse of to_extra_data; bad payloads yield []"""
    if not extra_data:
        return []

    entry = next((e for e in extra_data if isinstance(e, dict) and e.get("key") == EXTRA_DATA_KEY), None)
    if not entry or not entry.get("value"):
        return []

    try:
        parsed = json.loads(entry["value"])
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not parse extraData add-ons: {e}")
        return []
    if not isinstance(parsed, list):
        return []

    addons = []
    for raw in parsed:
        addon = coerce_cart_addon(raw)
        if addon is not None:
            addons.append(addon)
    return addons


def coerce_cart_addon(raw: Union[CartAddon, Dict, Any]) -> Optional[CartAddon]:
    """Accept cached / posted add-ons in either camelCase or raw Store API form"""
    if isinstance(raw, CartAddon):
        return raw
    if not isinstance(raw, dict):
        return None

    field_name = raw.get("fieldName", raw.get("field_name") if "value" in raw else None)
    if field_name not in (None, ""):
        value = "" if raw.get("value") is None else str(raw["value"])
        return CartAddon(
            field_name=str(field_name),
            value=value,
            price=money(parse_price(raw.get("price"))),
            label=str(raw.get("label") or value or field_name),
        )
    if _looks_like_addon(raw):
        return normalize_addon_entry(raw)
    return None
