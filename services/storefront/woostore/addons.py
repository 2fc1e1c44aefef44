"""
ADD-ONS FORMATTER
=================

Turns product-page selections into the Store API `addons_configuration` map:

    multiple_choice              -> option index (0-based)
    checkbox                     -> [option indexes]
    custom_text / custom_textarea -> "string"
    datepicker                   -> ISO8601 string
    custom_price / input_multiplier -> number
    file_upload                  -> complete URL

Reference: https://woocommerce.com/document/product-add-ons-rest-api-reference/
"""

import json
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from woostore.models import CartAddon, ProductAddon, SelectedAddon
from woostore.prices import money, parse_price

logger = logging.getLogger("storefront-addons")

MULTIPLE_CHOICE = "multiple_choice"
CHECKBOX = "checkbox"
CUSTOM_TEXT = "custom_text"
CUSTOM_TEXTAREA = "custom_textarea"
DATEPICKER = "datepicker"
CUSTOM_PRICE = "custom_price"
INPUT_MULTIPLIER = "input_multiplier"
FILE_UPLOAD = "file_upload"
HEADING = "heading"

CHOICE_TYPES = {MULTIPLE_CHOICE, CHECKBOX}
TEXT_TYPES = {CUSTOM_TEXT, CUSTOM_TEXTAREA}
NUMERIC_TYPES = {CUSTOM_PRICE, INPUT_MULTIPLIER}

# GraphQL enums lost their underscores in places (MULTIPLECHOICE, CUSTOMTEXT)
_COLLAPSED_TYPES = {
    t.replace("_", ""): t
    for t in (MULTIPLE_CHOICE, CUSTOM_TEXT, CUSTOM_TEXTAREA, CUSTOM_PRICE,
              INPUT_MULTIPLIER, FILE_UPLOAD)
}

PLACEHOLDERS = {
    CUSTOM_TEXT: "Enter text...",
    CUSTOM_TEXTAREA: "Enter your message...",
    CUSTOM_PRICE: "Enter amount...",
    INPUT_MULTIPLIER: "Enter quantity...",
    FILE_UPLOAD: "Choose file...",
    DATEPICKER: "Select date...",
}

ConfigValue = Union[int, float, str, List[int]]


class AddonSelectionError(ValueError):
    """A selection can't be expressed in the Store API format"""


def _as_addon(addon: Union[ProductAddon, Dict]) -> ProductAddon:
    if isinstance(addon, ProductAddon):
        return addon
    return ProductAddon.model_validate(addon)


def _as_selection(selection: Union[SelectedAddon, Dict, None]) -> Optional[SelectedAddon]:
    if selection is None or isinstance(selection, SelectedAddon):
        return selection
    return SelectedAddon.model_validate(selection)


# =============================================================================
# TYPES
# =============================================================================

def normalize_addon_type(addon_type: Optional[str]) -> str:
    """
    Normalize GraphQL / REST add-on types to snake_case.

    MULTIPLE_CHOICE, multiple-choice, MultipleChoice and MULTIPLECHOICE
    all become multiple_choice. Empty types default to custom_text.
    """
    if not addon_type:
        return CUSTOM_TEXT

    text = re.sub(r"(?<=[a-z])(?=[A-Z])", "_", str(addon_type))
    normalized = re.sub(r"[^a-z]", "_", text.lower())
    normalized = re.sub(r"_+", "_", normalized).strip("_")
    return _COLLAPSED_TYPES.get(normalized, normalized)


def is_choice_type(addon_type: Optional[str]) -> bool:
    return normalize_addon_type(addon_type) in CHOICE_TYPES


def is_text_type(addon_type: Optional[str]) -> bool:
    return normalize_addon_type(addon_type) in TEXT_TYPES


def is_numeric_type(addon_type: Optional[str]) -> bool:
    return normalize_addon_type(addon_type) in NUMERIC_TYPES


def addon_key(addon: Union[ProductAddon, Dict]) -> Optional[str]:
    """Store API key for an add-on: its id, or the id inside fieldName "addon-<id>" """
    addon = _as_addon(addon)
    if addon.id not in (None, ""):
        return str(addon.id)
    if addon.field_name:
        return addon.field_name.replace("addon-", "", 1) or None
    return None


def has_options(addon: Union[ProductAddon, Dict]) -> bool:
    return bool(_as_addon(addon).options)


def addon_placeholder(addon: Union[ProductAddon, Dict]) -> str:
    addon = _as_addon(addon)
    if addon.placeholder:
        return addon.placeholder
    return PLACEHOLDERS.get(normalize_addon_type(addon.type), f"Select {addon.name}...")


# =============================================================================
# FORMATTER
# =============================================================================

def _find_option_index(addon: ProductAddon, label: str) -> int:
    wanted = (label or "").strip().lower()
    for index, option in enumerate(addon.options):
        if option.label == label or option.label.strip().lower() == wanted:
            return index
    raise AddonSelectionError(f'"{label}" is not an option of "{addon.name}"')


def _choice_label(selection: SelectedAddon) -> str:
    if selection.label:
        return selection.label
    return selection.value if isinstance(selection.value, str) else ""


def _option_index(addon: ProductAddon, selection: SelectedAddon) -> Optional[int]:
    """Posted optionIndex wins over label matching"""
    if selection.option_index is not None:
        if not 0 <= selection.option_index < len(addon.options):
            raise AddonSelectionError(f'Option {selection.option_index} does not exist on "{addon.name}"')
        return selection.option_index
    label = _choice_label(selection)
    if not label:
        return None
    return _find_option_index(addon, label)


def _is_blank(selection: SelectedAddon) -> bool:
    return (
        selection.option_index is None
        and not selection.label
        and not selection.value_text
        and selection.value in (None, "", [])
    )


def _pair_selections(
    selected: Sequence[Union[SelectedAddon, Dict, None]],
    addons: List[ProductAddon]
) -> List[Tuple[Optional[ProductAddon], SelectedAddon]]:
    """Match selections to add-ons by addonId when given, else by position"""
    by_key = {addon_key(addon): addon for addon in addons}
    pairs = []
    for index, raw in enumerate(selected):
        selection = _as_selection(raw)
        if selection is None:
            continue
        if selection.addon_id not in (None, "") and addons:
            addon = by_key.get(str(selection.addon_id))
            if addon is None:
                raise AddonSelectionError(f"Unknown add-on {selection.addon_id}")
        else:
            addon = addons[index] if index < len(addons) else None
        pairs.append((addon, selection))
    return pairs


def _checkbox_labels(selection: SelectedAddon) -> List[str]:
    if isinstance(selection.value, list):
        return [str(v) for v in selection.value if v not in (None, "")]
    if selection.label:
        return [selection.label]
    if selection.value not in (None, ""):
        return [str(selection.value)]
    return []


def _iso_date(value: Any, addon: ProductAddon) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).isoformat()

    text = str(value or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).isoformat()
    except ValueError:
        raise AddonSelectionError(f'Invalid date for "{addon.name}": {value!r}')


def _number(value: Any, addon: ProductAddon) -> float:
    if isinstance(value, bool):
        raise AddonSelectionError(f'Invalid number for "{addon.name}": {value!r}')
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        raise AddonSelectionError(f'Invalid number for "{addon.name}": {value!r}')


def _text(selection: SelectedAddon) -> str:
    if selection.value_text:
        return selection.value_text
    if selection.value is None:
        return ""
    if isinstance(selection.value, list):
        return ", ".join(str(v) for v in selection.value)
    if isinstance(selection.value, float) and selection.value.is_integer():
        return str(int(selection.value))
    return str(selection.value)


def format_addon_value(addon: Union[ProductAddon, Dict], selection: Union[SelectedAddon, Dict]) -> Optional[ConfigValue]:
    """Format a single selection; None means the add-on type carries no value"""
    addon = _as_addon(addon)
    selection = _as_selection(selection)
    addon_type = normalize_addon_type(addon.type)

    if addon_type == MULTIPLE_CHOICE:
        return _option_index(addon, selection)

    if addon_type == CHECKBOX:
        if selection.option_index is not None and not isinstance(selection.value, list):
            return [_option_index(addon, selection)]
        return [_find_option_index(addon, label) for label in _checkbox_labels(selection)]

    if addon_type in TEXT_TYPES:
        return _text(selection)

    if addon_type in NUMERIC_TYPES | {DATEPICKER} and selection.value in (None, ""):
        return None

    if addon_type == DATEPICKER:
        return _iso_date(selection.value, addon)

    if addon_type in NUMERIC_TYPES:
        return _number(selection.value, addon)

    if addon_type == FILE_UPLOAD:
        return _text(selection)

    if addon_type == HEADING:
        return None

    logger.warning(f"Skipping add-on {addon.name!r} of unsupported type {addon.type!r}")
    return None


def format_addons_for_cart(
    selected: Sequence[Union[SelectedAddon, Dict, None]],
    product_addons: Sequence[Union[ProductAddon, Dict]]
) -> Dict[str, ConfigValue]:
    """
    Build `addons_configuration` for POST /cart/add-item.

    `selected[i]` is the user's selection for `product_addons[i]` unless it
    names its add-on with addonId; empty slots mean "nothing chosen" and are
    left out.
    """
    config: Dict[str, ConfigValue] = {}
    addons = [_as_addon(a) for a in product_addons]

    for addon, selection in _pair_selections(selected, addons):
        if addon is None:
            continue

        key = addon_key(addon)
        if not key:
            logger.warning(f"Add-on {addon.name!r} has no id, skipping")
            continue

        value = format_addon_value(addon, selection)
        if value is None or value == [] or value == "":
            continue
        config[key] = value

    return config


def _extra_data_entries(extra_data: Optional[List[Dict]]) -> List[Dict]:
    if not extra_data:
        return []

    entry = next((e for e in extra_data if isinstance(e, dict) and e.get("key") == "addons"), None)
    if not entry or not entry.get("value"):
        return []

    try:
        addons = json.loads(entry["value"]) if isinstance(entry["value"], str) else entry["value"]
    except (TypeError, ValueError) as e:
        logger.warning(f"Could not parse add-ons from extra_data: {e}")
        return []
    return addons if isinstance(addons, list) else []


def selections_from_extra_data(extra_data: Optional[List[Dict]]) -> List[Dict]:
    """Legacy extra_data entries that name their add-on, usable as selections"""
    return [
        entry for entry in _extra_data_entries(extra_data)
        if isinstance(entry, dict) and entry.get("addonId") not in (None, "")
    ]


def configuration_from_extra_data(extra_data: Optional[List[Dict]]) -> Dict[str, ConfigValue]:
    """
    Build `addons_configuration` from the legacy storefront envelope:

        extra_data = [{"key": "addons", "value": "[{\"addonId\": 17, \"optionIndex\": 2, ...}]"}]

    Entries sharing an addonId are checkbox ticks and become an index list.
    """
    addons = _extra_data_entries(extra_data)

    counts: Dict[str, int] = {}
    for addon in addons:
        if isinstance(addon, dict) and addon.get("addonId") not in (None, ""):
            key = str(addon["addonId"])
            counts[key] = counts.get(key, 0) + 1

    config: Dict[str, ConfigValue] = {}
    checkboxes: Dict[str, List[int]] = {}

    for addon in addons:
        if not isinstance(addon, dict) or addon.get("addonId") in (None, ""):
            continue
        key = str(addon["addonId"])
        option_index = addon.get("optionIndex")

        if counts[key] > 1:
            group = checkboxes.setdefault(key, [])
            if option_index is not None:
                group.append(int(option_index))
        elif option_index is not None:
            config[key] = int(option_index)
        elif addon.get("value"):
            config[key] = addon["value"]
        elif addon.get("label"):
            config[key] = addon["label"]

    config.update(checkboxes)
    return config


# =============================================================================
# VALIDATION / DISPLAY
# =============================================================================

def validate_addons_selection(
    product_addons: Sequence[Union[ProductAddon, Dict]],
    selected: Sequence[Union[SelectedAddon, Dict, None]]
) -> Tuple[bool, Optional[str]]:
    """Check that every required add-on has a selection"""
    addons = [_as_addon(a) for a in product_addons]
    chosen = {id(addon): selection for addon, selection in _pair_selections(selected, addons) if addon}

    for addon in addons:
        if not addon.required:
            continue

        selection = chosen.get(id(addon))
        if selection is None or _is_blank(selection):
            return False, f'"{addon.name}" is required. Please make a selection.'

        if normalize_addon_type(addon.type) == MULTIPLE_CHOICE and selection.option_index is None:
            if _choice_label(selection) in ("", addon.name):
                return False, f'Please select an option for "{addon.name}".'

    return True, None


def _addon_price(addon: ProductAddon, addon_type: str, configured: ConfigValue) -> float:
    if addon_type == CUSTOM_PRICE:
        return float(configured)
    if addon_type == INPUT_MULTIPLIER:
        return parse_price(addon.price) * float(configured)
    return parse_price(addon.price)


def selected_to_cart_addons(
    selected: Sequence[Union[SelectedAddon, Dict, None]],
    product_addons: Sequence[Union[ProductAddon, Dict]] = ()
) -> List[CartAddon]:
    """
    Normalize product-page selections into cart add-ons.

    With a product schema every price comes from it (option price, entered
    custom price, or add-on price x entered quantity) and posted prices are
    ignored. Checkbox selections become one entry per ticked option. Without
    a schema the posted price is all there is.
    """
    addons = [_as_addon(a) for a in product_addons]
    result: List[CartAddon] = []

    for addon, selection in _pair_selections(selected, addons):
        if addon is None:
            value = selection.label or _text(selection)
            result.append(CartAddon(
                field_name=selection.field_name,
                value=value,
                price=money(selection.price),
                label=value or selection.field_name,
            ))
            continue

        configured = format_addon_value(addon, selection)
        if configured is None or configured == [] or configured == "":
            continue

        field_name = addon.name or selection.field_name
        addon_type = normalize_addon_type(addon.type)

        if addon_type in CHOICE_TYPES:
            indexes = configured if isinstance(configured, list) else [configured]
            for index in indexes:
                option = addon.options[index]
                result.append(CartAddon(
                    field_name=field_name,
                    value=option.label,
                    price=money(parse_price(option.price)),
                    label=option.label,
                ))
            continue

        value = _text(selection)
        result.append(CartAddon(
            field_name=field_name,
            value=value,
            price=money(_addon_price(addon, addon_type, configured)),
            label=value or field_name,
        ))

    return result


def calculate_addons_total(addons: Sequence[Union[CartAddon, Dict]]) -> float:
    total = 0.0
    for addon in addons:
        price = addon.price if isinstance(addon, CartAddon) else parse_price(addon.get("price"))
        total += price or 0.0
    return money(total)


def addon_display_name(addon: CartAddon) -> str:
    price = f" (+${addon.price:.2f})" if addon.price > 0 else ""
    return f"{addon.label}: {addon.value}{price}"
