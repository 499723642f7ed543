"""
Configuration loading for tablesync.
"""

from .config_loader import (
    SyncConfig,
    build_retry_policy,
    build_store,
    build_synchronizer,
)

__all__ = [
    "SyncConfig",
    "build_retry_policy",
    "build_store",
    "build_synchronizer",
]
