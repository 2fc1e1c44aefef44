"""
Add-on models shared by the formatter, normalizer and order builder.

The storefront UI talks camelCase (fieldName, valueText); WooCommerce talks
snake_case. Models accept both and dump camelCase with by_alias=True.
"""

from typing import Any, Optional, List, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from woostore.prices import parse_price


def _as_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class AddonOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    label: str = ""
    price: Optional[Union[str, float]] = None
    price_type: Optional[str] = Field(default=None, alias="priceType")
    image: Optional[str] = None

    @field_validator("label", mode="before")
    @classmethod
    def coerce_label(cls, value):
        return _as_text(value)


class ProductAddon(BaseModel):
    """Product Add-Ons field as returned by wc/v3 (or its GraphQL twin)"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[Union[int, str]] = None
    field_name: Optional[str] = Field(default=None, alias="fieldName")
    name: str = ""
    type: str = ""
    display: Optional[str] = None
    title_format: Optional[str] = Field(default=None, alias="titleFormat")
    description: Optional[str] = None
    required: bool = False
    position: Optional[int] = None
    price: Optional[Union[str, float]] = None
    price_type: Optional[str] = Field(default=None, alias="priceType")
    options: List[AddonOption] = []
    placeholder: Optional[str] = None
    restrictions_type: Optional[str] = Field(default=None, alias="restrictionsType")
    restrictions: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None


class SelectedAddon(BaseModel):
    """One user selection from the product page: index-aligned with the product add-ons, or tied to one by addonId"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    field_name: str = Field(default="", alias="fieldName")
    label: str = ""
    value: Optional[Union[str, float, List[str]]] = None
    price: float = 0.0
    field_type: Optional[str] = Field(default=None, alias="fieldType")
    value_text: Optional[str] = Field(default=None, alias="valueText")
    addon_id: Optional[Union[int, str]] = Field(default=None, alias="addonId")
    option_index: Optional[int] = Field(default=None, alias="optionIndex")

    @field_validator("field_name", "label", mode="before")
    @classmethod
    def coerce_text(cls, value):
        return _as_text(value)

    @field_validator("price", mode="before")
    @classmethod
    def parse_display_price(cls, value):
        """UI prices arrive as numbers or display strings ("$1,290.00")"""
        if value is None or isinstance(value, (str, int, float)):
            return parse_price(value)
        return value

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, value):
        if isinstance(value, list):
            return [str(v) for v in value if v is not None]
        return value

    @field_validator("value_text", mode="before")
    @classmethod
    def coerce_value_text(cls, value):
        return None if value is None else _as_text(value)


class CartAddon(BaseModel):
    """Normalized add-on attached to a cart item"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    field_name: str = Field(alias="fieldName")
    value: str = ""
    price: float = 0.0
    label: str = ""


class MetaDataEntry(BaseModel):
    key: str
    value: str
    display_key: Optional[str] = None
    display_value: Optional[str] = None
