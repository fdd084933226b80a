"""
Error types for the record sync core.

Every failure that crosses a component boundary is one of these:
- SyncError: Base exception
- TokenExpiredError: Change token no longer honored, fall back to a full fetch
- ZoneNotFoundError: Zone does not exist yet, treated as an empty zone
- TransportFailure: Network, timeout or unexpected remote response
- SaveFailure: Local persistence failed after a merge was computed
- ShareAcceptanceFailure: Share could not be resolved or accepted
- ConfigurationError: Invalid configuration

Invariants:
    - All errors inherit from SyncError
    - Remote clients convert transport exceptions before they leave the client
    - Errors include context for debugging, never secrets

How to change safely:
    - New remote failure modes map onto an existing class where possible
    - Keep `code` values stable, the HTTP surface exposes them
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .remote.base import ZoneChanges


class SyncError(Exception):
    """Base exception for all sync errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SYNC_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {"code": self.code, "message": self.message, "details": self.details}


class TokenExpiredError(SyncError):
    """The change token for a zone is no longer valid.

    Recoverable: the caller discards the cursor and does a full fetch.
    """

    def __init__(self, message: str, zone: Optional[str] = None) -> None:
        super().__init__(message, code="TOKEN_EXPIRED", details={"zone": zone})
        self.zone = zone


class ZoneNotFoundError(SyncError):
    """The zone does not exist in the backing store.

    Not an error for the orchestrator: an absent zone is an empty zone.
    """

    def __init__(self, message: str, zone: Optional[str] = None) -> None:
        super().__init__(message, code="ZONE_NOT_FOUND", details={"zone": zone})
        self.zone = zone


class TransportFailure(SyncError):
    """A remote call failed (network, timeout, bad response).

    Raised when:
    - The backing store is unreachable
    - A request times out
    - The backing store answers with an unexpected status or body

    Attributes:
        partial: Changes accumulated before the failure, if paging had
            already made progress. The caller may apply them and advance
            the cursor to ``partial.new_token``.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        partial: Optional[ZoneChanges] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSPORT_FAILURE",
            details={"status_code": status_code},
        )
        self.status_code = status_code
        self.partial = partial


class SaveFailure(SyncError):
    """Local persistence failed after a successful merge computation.

    The in-memory changes remain pending until the next successful save.
    """

    def __init__(self, message: str, pending: int = 0) -> None:
        super().__init__(message, code="SAVE_FAILURE", details={"pending": pending})
        self.pending = pending


class ShareAcceptanceFailure(SyncError):
    """A share reference could not be resolved or accepted."""

    def __init__(self, message: str, reference: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SHARE_ACCEPTANCE_FAILURE",
            details={"reference": reference},
        )
        self.reference = reference


class ConfigurationError(SyncError):
    """Configuration is missing or inconsistent."""

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(message, code="CONFIGURATION_ERROR", details={"setting": setting})
        self.setting = setting
