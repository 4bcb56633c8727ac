"""
Static kind -> entity schema registry.

Adding an entity class means adding a model in `entities.py` and one
`TableSchema` entry here; the store derives its DDL and SQL from these entries.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

from eventcache.domain.entities import (
    BaseEntity,
    CustomerEntity,
    InquiryEntity,
    ListingEntity,
    MessageEntity,
    ProductEntity,
    ReviewEntity,
    ShopperEntity,
    TransactionEntity,
    UserEntity,
)

KIND_USER = 0
KIND_MESSAGE = 1059
KIND_INQUIRY = 4401
KIND_CUSTOMER = 4402
KIND_SHOPPER = 4403
KIND_TRANSACTION = 4404
KIND_PRODUCT = 30402
KIND_LISTING = 31400
KIND_REVIEW = 31555

# Columns present on every entity table, in insert order.
COMMON_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("entity_id", "text NOT NULL"),
    ("time", "timestamptz NOT NULL"),
    ("record_id", "text NOT NULL"),
    ("author", "text NOT NULL"),
    ("kind", "integer NOT NULL"),
    ("payload", "jsonb NOT NULL DEFAULT '{}'::jsonb"),
    ("relays", "text[] NOT NULL DEFAULT '{}'"),
)


@dataclass(frozen=True)
class TableSchema:
    """Storage layout of one entity class."""

    entity_class: str
    table: str
    model: Type[BaseEntity]
    columns: Tuple[Tuple[str, str], ...] = ()
    geo_column: Optional[str] = None
    merchant_column: Optional[str] = None

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in COMMON_COLUMNS + self.columns)


_SCHEMAS: Tuple[Tuple[int, TableSchema], ...] = (
    (
        KIND_USER,
        TableSchema("user", "users", UserEntity, geo_column="location"),
    ),
    (
        KIND_PRODUCT,
        TableSchema(
            "product",
            "products",
            ProductEntity,
            columns=(
                ("merchant_id", "text NOT NULL"),
                ("price", "numeric NOT NULL"),
                ("currency", "text NOT NULL"),
                ("category", "text"),
            ),
            geo_column="location",
            merchant_column="merchant_id",
        ),
    ),
    (
        KIND_LISTING,
        TableSchema(
            "listing",
            "listings",
            ListingEntity,
            columns=(("listing_id", "text NOT NULL"), ("merchant_id", "text NOT NULL")),
            geo_column="merchant_location",
            merchant_column="merchant_id",
        ),
    ),
    (
        KIND_MESSAGE,
        TableSchema(
            "message",
            "messages",
            MessageEntity,
            columns=(("sender_id", "text NOT NULL"), ("recipient_id", "text NOT NULL")),
            geo_column="location",
        ),
    ),
    (
        KIND_INQUIRY,
        TableSchema(
            "inquiry",
            "inquiries",
            InquiryEntity,
            columns=(
                ("customer_id", "text NOT NULL"),
                ("merchant_id", "text NOT NULL"),
                ("listing_id", "text NOT NULL"),
            ),
            geo_column="customer_location",
            merchant_column="merchant_id",
        ),
    ),
    (
        KIND_CUSTOMER,
        TableSchema(
            "customer",
            "customers",
            CustomerEntity,
            columns=(("customer_id", "text NOT NULL"), ("merchant_id", "text NOT NULL")),
            merchant_column="merchant_id",
        ),
    ),
    (
        KIND_SHOPPER,
        TableSchema(
            "shopper",
            "shoppers",
            ShopperEntity,
            columns=(("shopper_id", "text NOT NULL"),),
            geo_column="shopper_location",
        ),
    ),
    (
        KIND_TRANSACTION,
        TableSchema(
            "transaction",
            "transactions",
            TransactionEntity,
            columns=(
                ("total", "numeric NOT NULL"),
                ("currency", "text NOT NULL"),
                ("funding_source", "text"),
                ("merchant_id", "text"),
                ("listing_id", "text"),
            ),
            merchant_column="merchant_id",
        ),
    ),
    (
        KIND_REVIEW,
        TableSchema(
            "review",
            "reviews",
            ReviewEntity,
            columns=(("subject_id", "text NOT NULL"), ("rating", "double precision NOT NULL")),
        ),
    ),
)

KIND_REGISTRY: Dict[int, TableSchema] = dict(_SCHEMAS)
ENTITY_SCHEMAS: Dict[str, TableSchema] = {schema.entity_class: schema for _, schema in _SCHEMAS}


def schema_for_kind(kind: int) -> Optional[TableSchema]:
    return KIND_REGISTRY.get(kind)


def kind_for_class(entity_class: str) -> int:
    for kind, schema in _SCHEMAS:
        if schema.entity_class == entity_class:
            return kind
    raise KeyError(entity_class)


__all__ = [
    "COMMON_COLUMNS",
    "ENTITY_SCHEMAS",
    "KIND_CUSTOMER",
    "KIND_INQUIRY",
    "KIND_LISTING",
    "KIND_MESSAGE",
    "KIND_PRODUCT",
    "KIND_REGISTRY",
    "KIND_REVIEW",
    "KIND_SHOPPER",
    "KIND_TRANSACTION",
    "KIND_USER",
    "TableSchema",
    "kind_for_class",
    "schema_for_kind",
]
