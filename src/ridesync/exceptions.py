"""Custom exception hierarchy for ridesync."""

from __future__ import annotations


class RideSyncError(Exception):
    """Base exception for all ridesync errors."""


class RideSyncConfigError(RideSyncError):
    """Invalid or missing configuration."""


class StoreError(RideSyncError):
    """The record store could not complete an operation."""

    def __init__(
        self,
        message: str,
        *,
        request_id: str | None = None,
        endpoint: str = "",
        status_code: int | None = None,
    ) -> None:
        self.request_id = request_id
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class StoreWriteError(StoreError):
    """A create or status update did not reach the store.

    After a failed ``create`` the caller must not assume the record exists.
    """


class RecordNotFoundError(StoreWriteError):
    """Status update targeted a record that no longer exists."""


class StoreReadError(StoreError):
    """A lookup or stream read failed (network, non-2xx, invalid JSON)."""


class UnresolvedTargetError(RideSyncError):
    """Cancel was requested but no request id could be resolved.

    Raised when neither the bound record, the locally known id, nor the
    per-user fallback lookup produced an id. No state is changed.
    """

    def __init__(self, message: str, *, user_id: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(message)
