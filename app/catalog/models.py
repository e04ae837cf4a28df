# app/catalog/models.py
# Remote catalog shapes as returned by the listings / inventory endpoints.
# Unknown keys are kept (extra="allow") so nothing the API adds gets lost.
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Price(BaseModel):
    model_config = ConfigDict(extra="allow")

    amount: int = 0
    divisor: int = 100
    currency_code: str = ""

    def as_float(self) -> float:
        if not self.divisor:
            return float(self.amount)
        return self.amount / self.divisor


class Offering(BaseModel):
    model_config = ConfigDict(extra="allow")

    offering_id: Optional[int] = None
    quantity: int = 0
    is_enabled: bool = True
    is_deleted: bool = False
    price: Price = Field(default_factory=Price)
    readiness_state_id: Optional[int] = None


class PropertyValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    property_id: int
    property_name: str = ""
    scale_id: Optional[int] = None
    value_ids: List[int] = Field(default_factory=list)
    values: List[str] = Field(default_factory=list)


class Product(BaseModel):
    model_config = ConfigDict(extra="allow")

    product_id: int = 0
    sku: str = ""
    is_deleted: bool = False
    offerings: List[Offering] = Field(default_factory=list)
    property_values: List[PropertyValue] = Field(default_factory=list)

    def active_offering(self) -> Optional[Offering]:
        for o in self.offerings:
            if not o.is_deleted:
                return o
        return None


class Inventory(BaseModel):
    model_config = ConfigDict(extra="allow")

    products: List[Product] = Field(default_factory=list)
    price_on_property: List[int] = Field(default_factory=list)
    quantity_on_property: List[int] = Field(default_factory=list)
    sku_on_property: List[int] = Field(default_factory=list)

    def live_products(self) -> List[Product]:
        return [p for p in self.products if not p.is_deleted]


class Listing(BaseModel):
    model_config = ConfigDict(extra="allow")

    listing_id: int
    shop_id: Optional[int] = None
    title: str = ""
    description: str = ""
    state: str = ""
    quantity: int = 0
    tags: List[str] = Field(default_factory=list)
    materials: List[str] = Field(default_factory=list)
    price: Price = Field(default_factory=Price)
    has_variations: bool = False
    taxonomy_id: Optional[int] = None
    shipping_profile_id: Optional[int] = None
    processing_min: Optional[int] = None
    processing_max: Optional[int] = None
    inventory: Optional[Inventory] = None

    def live_products(self) -> List[Product]:
        return self.inventory.live_products() if self.inventory else []
