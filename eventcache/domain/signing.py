"""
Record identifiers and BIP-340 Schnorr signatures.

The identifier of a record is the SHA-256 digest of its canonical serialization;
the signature covers that digest and is checked against the author's x-only key.
"""

from __future__ import annotations

import hashlib
import json
import os
import time
from typing import Any, Dict, List, Optional, Sequence

from coincurve import PrivateKey, PublicKeyXOnly


def canonical_payload(
    pubkey: str, created_at: int, kind: int, tags: Sequence[Sequence[str]], content: str
) -> bytes:
    """Compact JSON array `[0, pubkey, created_at, kind, tags, content]` as UTF-8."""
    return json.dumps(
        [0, pubkey, created_at, kind, [list(tag) for tag in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def compute_event_id(
    pubkey: str, created_at: int, kind: int, tags: Sequence[Sequence[str]], content: str
) -> str:
    return hashlib.sha256(canonical_payload(pubkey, created_at, kind, tags, content)).hexdigest()


def verify_signature(pubkey: str, event_id: str, sig: str) -> bool:
    """
    Verify a Schnorr signature. Returns False for unparsable keys or signatures.
    """
    try:
        key = PublicKeyXOnly(bytes.fromhex(pubkey))
        return key.verify(bytes.fromhex(sig), bytes.fromhex(event_id))
    except ValueError:
        return False


def generate_secret() -> str:
    """Fresh random secret key as 64 hex characters."""
    return PrivateKey().secret.hex()


def public_key_for(secret: str) -> str:
    return PublicKeyXOnly.from_secret(bytes.fromhex(secret)).format().hex()


def sign_event(
    secret: str,
    kind: int,
    tags: Optional[List[List[str]]] = None,
    content: str = "",
    created_at: Optional[int] = None,
    aux_randomness: Optional[bytes] = None,
) -> Dict[str, Any]:
    """
    Build a signed record dict ready to be served by a source.

    `created_at` defaults to the current time; pass `aux_randomness` for
    reproducible signatures.
    """
    tags = [list(tag) for tag in (tags or [])]
    created_at = int(time.time()) if created_at is None else created_at
    private_key = PrivateKey(bytes.fromhex(secret))
    pubkey = public_key_for(secret)
    event_id = compute_event_id(pubkey, created_at, kind, tags, content)
    sig = private_key.sign_schnorr(
        bytes.fromhex(event_id),
        aux_randomness if aux_randomness is not None else os.urandom(32),
    )
    return {
        "id": event_id,
        "pubkey": pubkey,
        "created_at": created_at,
        "kind": kind,
        "tags": tags,
        "content": content,
        "sig": sig.hex(),
    }


__all__ = [
    "canonical_payload",
    "compute_event_id",
    "generate_secret",
    "public_key_for",
    "sign_event",
    "verify_signature",
]
