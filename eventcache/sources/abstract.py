"""
Relay source interface.

A source is an independent, untrusted peer that can hand back the records of
one kind created at or after a point in time. How it talks to the peer is its
own business; the coordinator only awaits `fetch` under a timeout.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, Sequence, runtime_checkable


@runtime_checkable
class RelaySource(Protocol):
    """
    Common interface all relay sources must implement.

    Attributes
    ----------
    name : str
        Stable identifier, used in reports and as a relay hint on stored rows.
    """

    name: str

    async def fetch(self, kind: int, since: Optional[int]) -> Sequence[Mapping[str, Any]]:
        """
        Return raw records of `kind` with `created_at >= since` (all when None).

        Implementations must release network resources when cancelled, since the
        coordinator cancels fetches that exceed their timeout. Raise
        `SourceUnreachable` (or any exception) when the peer cannot be reached.
        """
        ...


__all__ = ["RelaySource"]
