"""Where a record's content physically lives.

``ContentLocation`` is a closed set of three variants built from the
persisted tier columns. Code that reads, writes or migrates content
dispatches on the variant instead of on the raw ``storage_location``
string.
"""

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Union

from ..exceptions import ContentIntegrityError


class StorageTier(str, Enum):
    """Persisted value of ``storage_location``."""
    INLINE = "inline"
    OBJECT_STORE = "object_store"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class Inline:
    content: str


@dataclass(frozen=True)
class ObjectStore:
    key: str


@dataclass(frozen=True)
class Hybrid:
    content: str
    key: str


ContentLocation = Union[Inline, ObjectStore, Hybrid]


def sha256_hex(data: Union[str, bytes]) -> str:
    """SHA-256 of the UTF-8 bytes of ``data``."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def tier_of(location: ContentLocation) -> StorageTier:
    if isinstance(location, Inline):
        return StorageTier.INLINE
    if isinstance(location, Hybrid):
        return StorageTier.HYBRID
    return StorageTier.OBJECT_STORE


def location_of(record) -> ContentLocation:
    """Build the location variant from a record's tier columns.

    Raises:
        ContentIntegrityError: If the columns do not match the recorded tier.
    """
    tier = record.storage_location
    has_content = record.content is not None
    has_key = bool(record.object_key)

    if tier == StorageTier.INLINE.value and has_content:
        return Inline(record.content)
    if tier == StorageTier.OBJECT_STORE.value and has_key:
        return ObjectStore(record.object_key)
    if tier == StorageTier.HYBRID.value and has_content and has_key:
        return Hybrid(record.content, record.object_key)

    raise ContentIntegrityError(
        f"{type(record).__name__} {record.id} has tier '{tier}' "
        f"but content={'set' if has_content else 'missing'}, object_key={'set' if has_key else 'missing'}",
        details={
            "record_type": type(record).__name__,
            "record_id": record.id,
            "storage_location": tier,
        },
    )


def apply_location(record, location: ContentLocation) -> None:
    """Write a location variant back onto a record's tier columns."""
    if isinstance(location, Inline):
        record.content = location.content
        record.object_key = None
    elif isinstance(location, Hybrid):
        record.content = location.content
        record.object_key = location.key
    else:
        record.content = None
        record.object_key = location.key
    record.storage_location = tier_of(location).value
