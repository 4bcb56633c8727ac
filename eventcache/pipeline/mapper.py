"""
Entity mapper: projects validated records onto the registered entity schemas.

Relay payloads come from untrusted producers, so every field is extracted with
an explicit check. A missing or mistyped field yields a `SCHEMA_VIOLATION`
rejection naming it; unregistered kinds yield `UNKNOWN_KIND`.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from eventcache.domain.entities import (
    BaseEntity,
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
from eventcache.domain.registry import schema_for_kind
from eventcache.errors import RejectReason, Rejection
from eventcache.utils import geohash

MapResult = Union[BaseEntity, Rejection]

# Bounds for amounts stored in `numeric` columns.
_MAX_AMOUNT_DIGITS = 38
_MAX_AMOUNT_SCALE = 18


class SchemaViolation(Exception):
    """Raised inside field extractors; converted to a `Rejection` by `map`."""

    def __init__(self, field: str, detail: str) -> None:
        self.field = field
        self.detail = detail
        super().__init__(f"{field}: {detail}")


def entity_id_for(record: Record) -> str:
    """
    Logical identity of a record.

    Replaceable kinds are keyed by author, addressable kinds by
    `kind:author:d-tag`, and all other kinds by the record identifier.
    """
    kind = record.kind
    if kind in (0, 3) or 10000 <= kind < 20000:
        return record.pubkey
    if 30000 <= kind < 40000:
        return f"{kind}:{record.pubkey}:{record.first_tag('d') or ''}"
    return record.id


def _required_tag(record: Record, name: str) -> str:
    value = record.first_tag(name)
    if value is None:
        raise SchemaViolation(name, "required tag missing")
    return value


def _decimal(value: Optional[str], field: str) -> Decimal:
    try:
        amount = Decimal(value or "")
    except InvalidOperation:
        raise SchemaViolation(field, f"not a number: {value!r}") from None
    if not amount.is_finite() or amount < 0:
        raise SchemaViolation(field, f"not a non-negative amount: {value!r}")
    if amount.adjusted() >= _MAX_AMOUNT_DIGITS:
        raise SchemaViolation(field, f"more than {_MAX_AMOUNT_DIGITS} integer digits: {value!r}")
    if amount.as_tuple().exponent < -_MAX_AMOUNT_SCALE:
        raise SchemaViolation(field, f"more than {_MAX_AMOUNT_SCALE} decimal places: {value!r}")
    return amount


def _amount_tag(record: Record, name: str) -> tuple[Decimal, str]:
    for values in record.tag_values(name):
        if len(values) < 2 or not values[1]:
            raise SchemaViolation(name, "expected [amount, currency]")
        return _decimal(values[0], name), values[1].upper()
    raise SchemaViolation(name, "required tag missing")


def _location(record: Record) -> Optional[GeoPoint]:
    value = record.first_tag("g")
    if value is None:
        return None
    try:
        latitude, longitude = geohash.decode(value)
    except ValueError as exc:
        raise SchemaViolation("g", str(exc)) from None
    return GeoPoint(latitude=latitude, longitude=longitude)


def _relays(record: Record, source: Optional[str]) -> List[str]:
    relays: List[str] = []
    for name in ("relays", "relay"):
        for values in record.tag_values(name):
            relays.extend(value for value in values if value)
    if source:
        relays.append(source)
    return list(dict.fromkeys(relays))


def weighted_rating(ratings: Dict[str, float]) -> float:
    """
    Combine per-category ratings: `thumb` weighs half, the rest share the other half.
    """
    others = [value for category, value in ratings.items() if category != "thumb"]
    if "thumb" not in ratings:
        return sum(others) / len(others) if others else 0.0
    score = ratings["thumb"] * 0.5
    if others:
        score += sum(others) * (0.5 / len(others))
    return score


def _user(record: Record, common: Dict[str, Any]) -> BaseEntity:
    if "\\u0000" in record.content:
        raise SchemaViolation("content", "NUL escape is not storable")
    try:
        profile = json.loads(record.content) if record.content else {}
    except (json.JSONDecodeError, RecursionError):
        raise SchemaViolation("content", "profile is not valid JSON") from None
    if not isinstance(profile, dict):
        raise SchemaViolation("content", "profile must be a JSON object")
    try:
        json.dumps(profile, ensure_ascii=False).encode("utf-8")
    except UnicodeEncodeError:
        raise SchemaViolation("content", "profile holds an unpaired surrogate escape") from None
    return UserEntity(**common, payload=profile, location=_location(record))


def _product(record: Record, common: Dict[str, Any]) -> BaseEntity:
    price, currency = _amount_tag(record, "price")
    payload = {
        "title": record.first_tag("title"),
        "summary": record.first_tag("summary"),
        "images": [values[0] for values in record.tag_values("image") if values],
        "categories": [values[0] for values in record.tag_values("t") if values],
        "content": record.content,
    }
    return ProductEntity(
        **common,
        payload=payload,
        merchant_id=record.pubkey,
        price=price,
        currency=currency,
        category=record.first_tag("t"),
        location=_location(record),
    )


def _listing(record: Record, common: Dict[str, Any]) -> BaseEntity:
    return ListingEntity(
        **common,
        payload={"content": record.content},
        listing_id=_required_tag(record, "a"),
        merchant_id=record.pubkey,
        merchant_location=_location(record),
    )


def _message(record: Record, common: Dict[str, Any]) -> BaseEntity:
    # Content stays opaque: gift-wrapped messages are encrypted end to end.
    return MessageEntity(
        **common,
        payload={"content": record.content},
        sender_id=record.pubkey,
        recipient_id=_required_tag(record, "p"),
        location=_location(record),
    )


def _inquiry(record: Record, common: Dict[str, Any]) -> BaseEntity:
    return InquiryEntity(
        **common,
        payload={"content": record.content},
        customer_id=record.pubkey,
        merchant_id=_required_tag(record, "p"),
        listing_id=_required_tag(record, "a"),
        customer_location=_location(record),
    )


def _customer(record: Record, common: Dict[str, Any]) -> BaseEntity:
    return CustomerEntity(
        **common,
        payload={"content": record.content},
        customer_id=_required_tag(record, "p"),
        merchant_id=record.pubkey,
    )


def _shopper(record: Record, common: Dict[str, Any]) -> BaseEntity:
    return ShopperEntity(
        **common,
        payload={"content": record.content},
        shopper_id=record.pubkey,
        shopper_location=_location(record),
    )


def _transaction(record: Record, common: Dict[str, Any]) -> BaseEntity:
    total, currency = _amount_tag(record, "amount")
    return TransactionEntity(
        **common,
        payload={"content": record.content},
        total=total,
        currency=currency,
        funding_source=record.first_tag("funding_source"),
        merchant_id=record.first_tag("p"),
        listing_id=record.first_tag("a"),
    )


def _review(record: Record, common: Dict[str, Any]) -> BaseEntity:
    subject = _required_tag(record, "d")
    ratings: Dict[str, float] = {}
    for values in record.tag_values("rating"):
        if len(values) < 2 or not values[1]:
            raise SchemaViolation("rating", "expected [value, category]")
        try:
            value = float(values[0])
        except ValueError:
            raise SchemaViolation("rating", f"not a number: {values[0]!r}") from None
        if not 0.0 <= value <= 1.0:
            raise SchemaViolation("rating", f"out of range 0..1: {value}")
        ratings[values[1]] = value
    if not ratings:
        raise SchemaViolation("rating", "at least one rating tag required")
    return ReviewEntity(
        **common,
        payload={"ratings": ratings, "notes": record.content},
        subject_id=subject,
        rating=weighted_rating(ratings),
    )


_BUILDERS: Dict[str, Callable[[Record, Dict[str, Any]], BaseEntity]] = {
    "user": _user,
    "product": _product,
    "listing": _listing,
    "message": _message,
    "inquiry": _inquiry,
    "customer": _customer,
    "shopper": _shopper,
    "transaction": _transaction,
    "review": _review,
}


class EntityMapper:
    """Map validated records to entities through the static kind registry."""

    def map(self, record: Record, source: Optional[str] = None) -> MapResult:
        schema = schema_for_kind(record.kind)
        if schema is None:
            return Rejection(RejectReason.UNKNOWN_KIND, f"kind {record.kind} is not registered")

        common = {
            "entity_id": entity_id_for(record),
            "time": datetime.fromtimestamp(record.created_at, tz=timezone.utc),
            "record_id": record.id,
            "author": record.pubkey,
            "kind": record.kind,
            "relays": _relays(record, source),
        }
        try:
            return _BUILDERS[schema.entity_class](record, common)
        except SchemaViolation as exc:
            return Rejection(RejectReason.SCHEMA_VIOLATION, exc.detail, field=exc.field)
        except ValidationError as exc:
            error = exc.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ())) or schema.entity_class
            return Rejection(
                RejectReason.SCHEMA_VIOLATION, error.get("msg", "invalid"), field=field
            )


__all__ = ["EntityMapper", "MapResult", "entity_id_for", "weighted_rating"]
