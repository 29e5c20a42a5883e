"""
Adapters layer - External integrations (hosted backend, listings API).
"""

from .listing_source import ListingSourceClient
from .memory_store import MemoryStore
from .rest_store import RestStore

__all__ = ["ListingSourceClient", "MemoryStore", "RestStore"]
