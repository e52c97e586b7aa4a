"""Content placement: tier variants, the R2 client and the read cache."""

from .location import (
    StorageTier, Inline, ObjectStore, Hybrid, ContentLocation,
    location_of, apply_location, tier_of, sha256_hex,
)
from .object_store import ObjectStorage, R2ObjectStore, get_object_store
from .cache import ContentCache, content_cache

__all__ = [
    "StorageTier", "Inline", "ObjectStore", "Hybrid", "ContentLocation",
    "location_of", "apply_location", "tier_of", "sha256_hex",
    "ObjectStorage", "R2ObjectStore", "get_object_store",
    "ContentCache", "content_cache",
]
