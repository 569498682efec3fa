from __future__ import annotations

from typing import Any, Dict, Optional


class CacheError(Exception):
    """Raised when the expiring key-value store cannot be queried or written.

    Covers unreachable hosts, protocol errors and timeouts. A missing key is
    never a ``CacheError``; lookups report it as ``None``.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class KeyCollisionError(CacheError):
    """Raised when a set-if-absent write finds the key already present."""


class RefreshConsumedError(Exception):
    """Raised by renewal when the refresh record was already gone.

    Not a store failure: the store answered, and the refresh id had expired,
    been revoked or been used by an earlier renewal.
    """

    def __init__(self, refresh_id: str):
        super().__init__(f"refresh id {refresh_id} already consumed or expired")
        self.refresh_id = refresh_id


__all__ = ["CacheError", "KeyCollisionError", "RefreshConsumedError"]
