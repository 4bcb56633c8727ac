"""
Record model for the event cache.

A `Record` is the raw signed datum delivered by a relay source. It is immutable:
the cache never rewrites its identifier, author or signature. Field types are
strict so that a relay sending `"kind": "30402"` is rejected instead of coerced.
"""
from __future__ import annotations

from typing import Annotated, Iterator, List, Optional

from pydantic import BaseModel, Field, StrictInt, StrictStr

HexId = Annotated[StrictStr, Field(pattern=r"^[0-9a-f]{64}$")]
HexSig = Annotated[StrictStr, Field(pattern=r"^[0-9a-f]{128}$")]
Tag = Annotated[List[StrictStr], Field(min_length=1)]


class Record(BaseModel):
    """
    Representation of a single relay record, pre-mapping.
    """

    id: HexId = Field(..., description="SHA-256 of the canonical serialization.")
    pubkey: HexId = Field(..., description="x-only secp256k1 public key of the author.")
    created_at: StrictInt = Field(..., description="Source-asserted creation time, unix seconds.")
    kind: StrictInt = Field(..., ge=0, le=65535, description="Entity schema discriminator.")
    tags: List[Tag] = Field(default_factory=list, description="Ordered tag lists.")
    content: StrictStr = Field(..., description="Kind-specific payload.")
    sig: HexSig = Field(..., description="BIP-340 Schnorr signature over `id`.")

    model_config = {
        "frozen": True,
        "extra": "ignore",
    }

    def tag_values(self, name: str) -> Iterator[List[str]]:
        """Yield the values (everything after the tag name) of each `name` tag."""
        for tag in self.tags:
            if tag[0] == name:
                yield tag[1:]

    def first_tag(self, name: str) -> Optional[str]:
        """First value of the first `name` tag, or None when absent or empty."""
        for values in self.tag_values(name):
            return values[0] if values and values[0] else None
        return None


__all__ = ["Record"]
