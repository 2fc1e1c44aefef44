"""
PRODUCT TRANSFORMER
===================

wc/v3 products and variations -> the GraphQL Product / Variation shape the
storefront components consume. Prices stay decimal strings as wc/v3 sends them.
"""

from typing import Any, Dict, List, Optional

from woostore.addons import (
    CHECKBOX,
    CUSTOM_TEXT,
    CUSTOM_TEXTAREA,
    FILE_UPLOAD,
    MULTIPLE_CHOICE,
    normalize_addon_type,
)
from woostore.prices import parse_price


def _enum(value: Optional[str], default: str) -> str:
    """flat_fee -> FLAT_FEE; multiple-choice -> MULTIPLE_CHOICE"""
    if not value:
        return default
    return normalize_addon_type(value).upper()


def _float(value: Any) -> float:
    return parse_price(value) if value not in (None, "") else 0.0


def _meta(entries: Optional[List[Dict]]) -> List[Dict[str, str]]:
    return [
        {
            "id": str(meta.get("id") or ""),
            "key": meta.get("key"),
            "value": "" if meta.get("value") is None else str(meta.get("value")),
        }
        for meta in entries or []
    ]


def _image(image: Optional[Dict], fallback_name: str) -> Optional[Dict[str, Any]]:
    if not image:
        return None
    return {
        "sourceUrl": image.get("src"),
        "altText": image.get("alt") or fallback_name,
        "title": image.get("name") or fallback_name,
        "cartSourceUrl": image.get("src"),
    }


def _price_fields(source: Dict) -> Dict[str, Any]:
    return {
        "price": source.get("price") or "",
        "regularPrice": source.get("regular_price") or "",
        "salePrice": source.get("sale_price") or "",
        "rawPrice": source.get("price") or "",
        "rawRegularPrice": source.get("regular_price") or "",
        "rawSalePrice": source.get("sale_price") or "",
        "onSale": bool(source.get("on_sale")),
    }


def _stock_status(source: Dict) -> str:
    return (source.get("stock_status") or "instock").upper()


def transform_addons(rest_addons: Optional[List[Dict]]) -> List[Dict[str, Any]]:
    """Product Add-Ons REST schema -> GraphQL-style add-ons (fieldName "addon-<id>")"""
    result = []
    for addon in rest_addons or []:
        addon_type = normalize_addon_type(addon.get("type") or MULTIPLE_CHOICE)
        transformed: Dict[str, Any] = {
            "id": addon.get("id"),
            "fieldName": f"addon-{addon.get('id')}",
            "name": addon.get("name") or "",
            "description": addon.get("description") or "",
            "price": addon.get("price") or "0",
            "priceType": _enum(addon.get("price_type"), "FLAT_FEE"),
            "required": bool(addon.get("required")),
            "titleFormat": _enum(addon.get("title_format"), "LABEL"),
            "type": addon_type.upper(),
        }

        if addon_type in (MULTIPLE_CHOICE, CHECKBOX):
            transformed["display"] = addon.get("display") or "select"
            transformed["options"] = [
                {
                    "label": option.get("label") or "",
                    "price": option.get("price") or "0",
                    "priceType": _enum(option.get("price_type"), "FLAT_FEE"),
                    "image": option.get("image") or None,
                }
                for option in addon.get("options") or []
            ]
        elif addon_type in (CUSTOM_TEXT, CUSTOM_TEXTAREA):
            transformed["placeholder"] = addon.get("placeholder") or ""
            transformed["restrictionsType"] = addon.get("restrictions_type") or "any_text"
            transformed["min"] = addon.get("min") or 0
            transformed["max"] = addon.get("max") or 0
        elif addon_type == FILE_UPLOAD:
            transformed["restrictions"] = addon.get("restrictions") or 0

        result.append(transformed)
    return result


def _attribute(attr: Dict) -> Dict[str, Any]:
    options = attr.get("options") or []
    return {
        "id": f"attribute-{attr.get('id')}",
        "attributeId": attr.get("id"),
        "name": attr.get("name"),
        "label": attr.get("name"),
        "options": options,
        "visible": attr.get("visible"),
        "variation": attr.get("variation"),
        "position": attr.get("position"),
        "terms": {
            "nodes": [
                {
                    "name": option,
                    "slug": "-".join(str(option).lower().split()),
                    "taxonomyName": attr.get("name"),
                    "databaseId": index,
                }
                for index, option in enumerate(options)
            ]
        } if attr.get("variation") else None,
    }


def transform_product(product: Dict) -> Dict[str, Any]:
    """wc/v3 product -> GraphQL Product"""
    name = product.get("name") or ""
    images = product.get("images") or []
    dimensions = product.get("dimensions") or {}

    return {
        "id": f"product-{product.get('id')}",
        "databaseId": product.get("id"),
        "name": name,
        "slug": product.get("slug") or "",
        "type": (product.get("type") or "simple").upper(),
        "sku": product.get("sku") or "",
        "description": product.get("description") or "",
        "shortDescription": product.get("short_description") or "",
        **_price_fields(product),
        "stockStatus": _stock_status(product),
        "stockQuantity": product.get("stock_quantity"),
        "lowStockAmount": product.get("low_stock_amount"),
        "averageRating": _float(product.get("average_rating")),
        "reviewCount": product.get("rating_count") or 0,
        "weight": product.get("weight") or "",
        "length": dimensions.get("length") or "",
        "width": dimensions.get("width") or "",
        "height": dimensions.get("height") or "",
        "virtual": bool(product.get("virtual")),
        "image": _image(images[0] if images else None, name),
        "galleryImages": {"nodes": [_image(img, name) for img in images]},
        "productCategories": {
            "nodes": [
                {"databaseId": c.get("id"), "slug": c.get("slug"), "name": c.get("name")}
                for c in product.get("categories") or []
            ]
        },
        "productTags": {
            "nodes": [
                {"databaseId": t.get("id"), "slug": t.get("slug"), "name": t.get("name")}
                for t in product.get("tags") or []
            ]
        },
        "attributes": {
            "nodes": [_attribute(a) for a in product.get("attributes") or []]
        } if product.get("attributes") else None,
        "defaultAttributes": [
            {"attributeId": a.get("id"), "name": a.get("name"), "value": a.get("option")}
            for a in product.get("default_attributes") or []
        ],
        "addons": transform_addons(product.get("addons")),
        "variationIds": list(product.get("variations") or []),
        "relatedIds": list(product.get("related_ids") or []),
        "metaData": _meta(product.get("meta_data")),
        "externalUrl": product.get("external_url") or "",
        "buttonText": product.get("button_text") or "",
        "date": product.get("date_created") or "",
    }


def transform_variation(variation: Dict, parent: Optional[Dict] = None) -> Dict[str, Any]:
    """wc/v3 variation -> GraphQL Variation"""
    parent = parent or {}
    parent_name = parent.get("name") or ""
    dimensions = variation.get("dimensions") or {}
    permalink = variation.get("permalink") or ""

    return {
        "id": f"variation-{variation.get('id')}",
        "databaseId": variation.get("id"),
        "name": variation.get("name") or variation.get("sku") or f"{parent_name} - Variation",
        "slug": permalink.rstrip("/").split("/")[-1] if permalink else "",
        "sku": variation.get("sku") or "",
        **_price_fields(variation),
        "stockStatus": _stock_status(variation),
        "stockQuantity": variation.get("stock_quantity"),
        "image": _image(variation.get("image"), parent_name),
        "attributes": {
            "nodes": [
                {
                    "id": f"variation-attribute-{a.get('id')}",
                    "attributeId": a.get("id"),
                    "name": a.get("name"),
                    "value": a.get("option"),
                }
                for a in variation.get("attributes") or []
            ]
        },
        "weight": variation.get("weight") or "",
        "length": dimensions.get("length") or "",
        "width": dimensions.get("width") or "",
        "height": dimensions.get("height") or "",
        "virtual": bool(variation.get("virtual")),
        "downloadable": bool(variation.get("downloadable")),
        "metaData": _meta(variation.get("meta_data")),
    }
