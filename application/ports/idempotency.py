"""
Idempotency store port.

Implementations must make ``claim`` atomic across processes (unique-constraint
insert or Redis ``SET NX``). A pending claim is a lease: once it is older than
the store's lease window another caller may take the key over, so a worker
that died mid-operation never blocks the key for the whole TTL.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ClaimResult:
    claimed: bool
    completed: bool = False
    result: Optional[Any] = None
    # 持有者凭证；complete/release 只作用于自己的 claim
    token: Optional[str] = None


@runtime_checkable
class IdempotencyStore(Protocol):

    async def claim(self, key: str, ttl_seconds: int) -> ClaimResult:
        """Reserve ``key``; when already present, report its state and stored result."""
        ...

    async def complete(self, key: str, result: Any, token: Optional[str] = None) -> bool:
        """Store the result; False when the claim was lost to a takeover."""
        ...

    async def release(self, key: str, token: Optional[str] = None) -> None:
        """Drop a pending reservation after a failed operation."""
        ...
