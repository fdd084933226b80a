"""
Inbound share handling for recordsync.

- PendingShareReference: single-slot mailbox for early deliveries
- ShareAcceptanceEngine: resolve, accept and import a share
"""

from .acceptance import (
    AcceptanceResult,
    AcceptanceState,
    ShareAcceptanceEngine,
    summarize_participants,
)
from .pending import PendingShareReference, ShareReference

__all__ = [
    "ShareReference",
    "PendingShareReference",
    "ShareAcceptanceEngine",
    "AcceptanceResult",
    "AcceptanceState",
    "summarize_participants",
]
