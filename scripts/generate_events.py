"""
Sample relay export generator for the event cache.

Writes deterministic, correctly signed records (JSON Lines) for every registered
kind so `eventcache ingest --source FILE` has something realistic to chew on.
A fraction of records can be corrupted to exercise the rejection paths.
"""

from __future__ import annotations

import json
import random
import sys
import time
from pathlib import Path
from typing import Any, Dict, List

import typer

from eventcache.domain.registry import (
    KIND_CUSTOMER,
    KIND_INQUIRY,
    KIND_LISTING,
    KIND_MESSAGE,
    KIND_PRODUCT,
    KIND_REVIEW,
    KIND_SHOPPER,
    KIND_TRANSACTION,
    KIND_USER,
)
from eventcache.domain.signing import public_key_for, sign_event

app = typer.Typer(help="Generate a signed sample relay export (JSON Lines).")

# City-centre geohashes: Berlin, San Francisco, New York, Sao Paulo, Tokyo.
_GEOHASHES = ["u33dc0cppjs7", "9q8yyk8ytpxr", "dr5regw3pp", "6gyf4bf8mk", "xn76cydhz"]
_CATEGORIES = ["electronics", "books", "garden", "apparel", "food"]
_CURRENCIES = ["USD", "EUR", "SAT"]


def _secret(rng: random.Random) -> str:
    # Not range-checked against the curve order.
    return f"{rng.getrandbits(256):064x}"


def _generate_records(
    merchants: int, products: int, seed: int, base_time: int
) -> List[Dict[str, Any]]:
    rng = random.Random(seed)
    merchant_keys = [_secret(rng) for _ in range(merchants)]
    shopper_keys = [_secret(rng) for _ in range(max(1, merchants // 2))]
    records: List[Dict[str, Any]] = []

    def signed(secret: str, kind: int, tags: List[List[str]], content: str = "") -> Dict[str, Any]:
        created_at = base_time - rng.randint(0, 30 * 24 * 3600)
        return sign_event(
            secret,
            kind,
            tags=tags,
            content=content,
            created_at=created_at,
            aux_randomness=rng.randbytes(32),
        )

    for index, secret in enumerate(merchant_keys):
        profile = {"name": f"merchant-{index}", "about": "Sample merchant"}
        records.append(
            signed(secret, KIND_USER, [["g", rng.choice(_GEOHASHES)]], json.dumps(profile))
        )

    for index in range(products):
        secret = rng.choice(merchant_keys)
        merchant = public_key_for(secret)
        product_d = f"product-{index}"
        tags = [
            ["d", product_d],
            ["title", f"Sample product {index}"],
            ["price", f"{rng.uniform(1, 500):.2f}", rng.choice(_CURRENCIES)],
            ["t", rng.choice(_CATEGORIES)],
            ["g", rng.choice(_GEOHASHES)],
        ]
        records.append(signed(secret, KIND_PRODUCT, tags, "A product generated for testing."))

        address = f"{KIND_PRODUCT}:{merchant}:{product_d}"
        records.append(
            signed(
                secret,
                KIND_LISTING,
                [["d", f"listing-{index}"], ["a", address], ["g", rng.choice(_GEOHASHES)]],
            )
        )

        shopper = rng.choice(shopper_keys)
        records.append(
            signed(
                shopper,
                KIND_INQUIRY,
                [["p", merchant], ["a", address], ["g", rng.choice(_GEOHASHES)]],
                "Is this still available?",
            )
        )
        records.append(
            signed(
                shopper,
                KIND_TRANSACTION,
                [["amount", f"{rng.uniform(1, 500):.2f}", "USD"], ["p", merchant], ["a", address]],
            )
        )
        records.append(
            signed(
                shopper,
                KIND_REVIEW,
                [
                    ["d", address],
                    ["rating", f"{rng.random():.2f}", "thumb"],
                    ["rating", f"{rng.random():.2f}", "quality"],
                ],
                "Sample review.",
            )
        )
        records.append(signed(secret, KIND_CUSTOMER, [["p", public_key_for(shopper)]]))
        records.append(
            signed(secret, KIND_MESSAGE, [["p", public_key_for(shopper)]], "opaque-ciphertext")
        )

    for secret in shopper_keys:
        records.append(signed(secret, KIND_SHOPPER, [["g", rng.choice(_GEOHASHES)]]))

    return records


def _corrupt(records: List[Dict[str, Any]], ratio: float, seed: int) -> int:
    rng = random.Random(seed + 1)
    corrupted = 0
    for raw in records:
        if rng.random() >= ratio:
            continue
        if rng.random() < 0.5:
            raw["sig"] = "0" * 128
        else:
            raw["content"] = raw["content"] + " (tampered)"
        corrupted += 1
    return corrupted


@app.command()
def main(
    output: Path = typer.Option(
        Path("data/relay.jsonl"),
        "--output",
        "-o",
        help="Destination JSON Lines file.",
    ),
    merchants: int = typer.Option(10, "--merchants", "-m", help="Number of merchant keys."),
    products: int = typer.Option(100, "--products", "-p", help="Number of products."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    base_time: int = typer.Option(
        0,
        "--base-time",
        help="Newest created_at (unix seconds); 0 means now.",
    ),
    corrupt_ratio: float = typer.Option(
        0.0,
        "--corrupt-ratio",
        help="Fraction of records to tamper with (bad signature or content).",
    ),
) -> None:
    """
    Generate a signed sample relay export.
    """
    start = time.perf_counter()
    records = _generate_records(merchants, products, seed, base_time or int(time.time()))
    corrupted = _corrupt(records, corrupt_ratio, seed) if corrupt_ratio > 0 else 0

    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as f:
        for raw in records:
            f.write(json.dumps(raw, separators=(",", ":")) + "\n")

    duration = time.perf_counter() - start
    typer.echo(
        f"Wrote {len(records):,} records ({corrupted:,} tampered) -> {output} in {duration:.2f}s"
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
