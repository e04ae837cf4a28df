# app/upload/models.py
# Editable listing model decoded from the sheet, plus the preview/progress
# shapes returned to the dashboard.
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Decoded sheet rows
# ---------------------------------------------------------------------------

@dataclass
class ProcessedVariation:
    product_id: int = 0
    property_name_1: str = ""
    property_option_1: str = ""
    property_name_2: str = ""
    property_option_2: str = ""
    sku: str = ""
    price: Optional[float] = None
    quantity: Optional[int] = None
    property_id_1: int = 0
    property_option_ids_1: List[int] = field(default_factory=list)
    property_id_2: int = 0
    property_option_ids_2: List[int] = field(default_factory=list)
    to_delete: bool = False

    def label(self) -> str:
        parts = [p for p in (self.property_option_1, self.property_option_2) if p]
        return " / ".join(parts) or f"product {self.product_id}"


@dataclass
class ProcessedListing:
    listing_id: int = 0
    title: str = ""
    description: str = ""
    status: str = ""
    tags: List[str] = field(default_factory=list)
    price: Optional[float] = None
    currency_code: str = ""
    quantity: Optional[int] = None
    sku: str = ""
    has_variations: bool = False
    variations: List[ProcessedVariation] = field(default_factory=list)
    materials: Optional[List[str]] = None
    shipping_profile_id: Optional[int] = None
    processing_min: Optional[int] = None
    processing_max: Optional[int] = None
    to_delete: bool = False


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------

class FieldChange(BaseModel):
    field: str
    before: Any = None
    after: Any = None
    change_type: str = "modified"  # modified | added | removed


class VariationChange(BaseModel):
    change_id: str
    variation_id: str
    change_type: str  # create | update | delete
    label: str = ""
    field_changes: List[FieldChange] = Field(default_factory=list)


class PreviewChange(BaseModel):
    change_id: str
    change_type: str  # create | update | delete
    listing_id: int
    title: str = ""
    field_changes: List[FieldChange] = Field(default_factory=list)
    variation_changes: List[VariationChange] = Field(default_factory=list)
    unavailable: bool = False
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class PreviewSummary(BaseModel):
    total_changes: int = 0
    creates: int = 0
    updates: int = 0
    deletes: int = 0
    unavailable: int = 0


class PreviewResponse(BaseModel):
    changes: List[PreviewChange] = Field(default_factory=list)
    summary: PreviewSummary = Field(default_factory=PreviewSummary)
    file_hash: Optional[str] = None


# ---------------------------------------------------------------------------
# Apply progress / results
# ---------------------------------------------------------------------------

class FailedListing(BaseModel):
    listing_id: int
    error: str
    change_id: Optional[str] = None


class UploadProgress(BaseModel):
    file_hash: str
    file_name: str = ""
    total_listings: int = 0
    processed_listing_ids: List[int] = Field(default_factory=list)
    failed_listings: List[FailedListing] = Field(default_factory=list)
    timestamp: int = 0  # epoch ms
    accepted_change_ids: List[str] = Field(default_factory=list)


class ApplyResult(BaseModel):
    file_hash: str
    total: int = 0
    processed_listing_ids: List[int] = Field(default_factory=list)
    created_listing_ids: List[int] = Field(default_factory=list)
    failed_listings: List[FailedListing] = Field(default_factory=list)
    skipped: int = 0
    resumed: bool = False
    checkpoint_cleared: bool = False
