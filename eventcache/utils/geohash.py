"""Geohash decoding for the `g` location tags carried by marketplace records."""

from __future__ import annotations

from typing import Tuple

_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
_DECODE_MAP = {char: index for index, char in enumerate(_BASE32)}


def decode(geohash: str) -> Tuple[float, float]:
    """
    Decode a geohash to the (latitude, longitude) centre of its cell.

    Raises ValueError for empty input or characters outside the geohash alphabet.
    """
    if not geohash:
        raise ValueError("empty geohash")

    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0
    even = True  # bits alternate longitude, latitude

    for char in geohash.lower():
        try:
            value = _DECODE_MAP[char]
        except KeyError:
            raise ValueError(f"invalid geohash character {char!r}") from None
        for shift in range(4, -1, -1):
            bit = (value >> shift) & 1
            if even:
                mid = (lon_lo + lon_hi) / 2
                if bit:
                    lon_lo = mid
                else:
                    lon_hi = mid
            else:
                mid = (lat_lo + lat_hi) / 2
                if bit:
                    lat_lo = mid
                else:
                    lat_hi = mid
            even = not even

    return (lat_lo + lat_hi) / 2, (lon_lo + lon_hi) / 2


__all__ = ["decode"]
