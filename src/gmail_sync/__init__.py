"""Gmail Sync Engine - quota-aware, resumable Gmail mailbox synchronization.

This package keeps a local SQLite cache consistent with a Gmail mailbox
using a resumable full sync and incremental history-based delta syncs.
"""

__version__ = "0.1.0"

from gmail_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
