"""
Domain package for the event cache.

Exports the record model, the entity classes and the kind registry. Keep this
package focused on data definitions and validation concerns.
"""

from eventcache.domain.entities import (
    BaseEntity,
    BoundingBox,
    CustomerEntity,
    GeoPoint,
    InquiryEntity,
    ListingEntity,
    MessageEntity,
    ProductEntity,
    ReviewEntity,
    ShopperEntity,
    TransactionEntity,
    UserEntity,
)
from eventcache.domain.records import Record
from eventcache.domain.registry import (
    ENTITY_SCHEMAS,
    KIND_REGISTRY,
    TableSchema,
    kind_for_class,
    schema_for_kind,
)

__all__ = [
    "BaseEntity",
    "BoundingBox",
    "CustomerEntity",
    "ENTITY_SCHEMAS",
    "GeoPoint",
    "InquiryEntity",
    "KIND_REGISTRY",
    "ListingEntity",
    "MessageEntity",
    "ProductEntity",
    "Record",
    "ReviewEntity",
    "ShopperEntity",
    "TableSchema",
    "TransactionEntity",
    "UserEntity",
    "kind_for_class",
    "schema_for_kind",
]
