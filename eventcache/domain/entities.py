"""
Entity models for the event cache.

An entity is the validated, schema-typed projection of a `Record`. Every class
is keyed by `(entity_id, time)`: re-announcements of the same logical entity
become new rows, and "current state" is the latest row per id. The classes form
a closed set: each carries a literal `entity_class` naming its table in the
registry.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    model_config = {"frozen": True}


class BoundingBox(BaseModel):
    """Axis-aligned box in WGS84 degrees."""

    min_latitude: float = Field(..., ge=-90.0, le=90.0)
    min_longitude: float = Field(..., ge=-180.0, le=180.0)
    max_latitude: float = Field(..., ge=-90.0, le=90.0)
    max_longitude: float = Field(..., ge=-180.0, le=180.0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _ordered(self) -> "BoundingBox":
        if self.min_latitude > self.max_latitude or self.min_longitude > self.max_longitude:
            raise ValueError("bounding box minimums must not exceed maximums")
        return self

    def contains(self, point: GeoPoint) -> bool:
        return (
            self.min_latitude <= point.latitude <= self.max_latitude
            and self.min_longitude <= point.longitude <= self.max_longitude
        )


class BaseEntity(BaseModel):
    """Columns shared by every entity table."""

    entity_id: str = Field(..., min_length=1)
    time: datetime = Field(..., description="Source-asserted creation time (UTC).")
    record_id: str = Field(..., description="Identifier of the record this row came from.")
    author: str
    kind: int
    payload: Dict[str, Any] = Field(default_factory=dict)
    relays: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class UserEntity(BaseEntity):
    entity_class: Literal["user"] = "user"
    location: Optional[GeoPoint] = None


class ProductEntity(BaseEntity):
    entity_class: Literal["product"] = "product"
    merchant_id: str
    price: Decimal = Field(..., ge=0)
    currency: str
    category: Optional[str] = None
    location: Optional[GeoPoint] = None


class ListingEntity(BaseEntity):
    entity_class: Literal["listing"] = "listing"
    listing_id: str
    merchant_id: str
    merchant_location: Optional[GeoPoint] = None


class MessageEntity(BaseEntity):
    entity_class: Literal["message"] = "message"
    sender_id: str
    recipient_id: str
    location: Optional[GeoPoint] = None


class InquiryEntity(BaseEntity):
    entity_class: Literal["inquiry"] = "inquiry"
    customer_id: str
    merchant_id: str
    listing_id: str
    customer_location: Optional[GeoPoint] = None


class CustomerEntity(BaseEntity):
    entity_class: Literal["customer"] = "customer"
    customer_id: str
    merchant_id: str


class ShopperEntity(BaseEntity):
    entity_class: Literal["shopper"] = "shopper"
    shopper_id: str
    shopper_location: Optional[GeoPoint] = None


class TransactionEntity(BaseEntity):
    entity_class: Literal["transaction"] = "transaction"
    total: Decimal = Field(..., ge=0)
    currency: str
    funding_source: Optional[str] = None
    merchant_id: Optional[str] = None
    listing_id: Optional[str] = None


class ReviewEntity(BaseEntity):
    entity_class: Literal["review"] = "review"
    subject_id: str
    rating: float = Field(..., ge=0.0, le=1.0)


__all__ = [
    "BaseEntity",
    "BoundingBox",
    "CustomerEntity",
    "GeoPoint",
    "InquiryEntity",
    "ListingEntity",
    "MessageEntity",
    "ProductEntity",
    "ReviewEntity",
    "ShopperEntity",
    "TransactionEntity",
    "UserEntity",
]
