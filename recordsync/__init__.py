"""
recordsync - pull-side sync core for local-first health and pet records.

Records live in a local SQLite store and are optionally mirrored to a
cloud backing store and shared with other users. This package folds
remote changes back into the local store:

Architecture:
    ┌──────────────┐     ┌──────────────┐     ┌──────────────────┐
    │  HTTP / API  │────▶│ SyncService  │────▶│ SyncOrchestrator │
    └──────────────┘     └──────┬───────┘     └────────┬─────────┘
                                │                      │
                                ▼                      ▼
                      ┌───────────────────┐   ┌─────────────────┐
                      │ ShareAcceptance   │──▶│  ZoneDirectory  │
                      │ + pending box     │   │  RemoteFetch    │
                      └───────────────────┘   └────────┬────────┘
                                                       │
                                                       ▼
                      ┌──────────────┐        ┌─────────────────┐
                      │ CursorStore  │◀───────│ Translator +    │
                      │  (SQLite)    │        │ MergeEngine     │
                      └──────────────┘        └────────┬────────┘
                                                       │
                                                       ▼
                                              ┌─────────────────┐
                                              │   LocalStore    │
                                              │    (SQLite)     │
                                              └─────────────────┘

Invariants:
    - The local store is authoritative for what the user sees
    - Conflicts resolve last-writer-wins on updated_at; tombstones win
    - A zone cursor only advances past changes that were saved
    - Sharing visibility dominates cloud visibility, which dominates local

How to change safely:
    - Remote field names live in sync/translator.py only
    - New remote backends implement remote.base.RemoteFetchClient
    - Keep cursor keys (Zone.key) stable, they are persisted
"""

from ._version import __version__

__all__ = ["__version__"]
