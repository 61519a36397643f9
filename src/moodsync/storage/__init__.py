"""Profile storage — the external store contract and its bundled implementations."""

from moodsync.storage.profiles import (
    InMemoryProfileStore,
    JsonFileProfileStore,
    ProfileStore,
)

__all__ = ["InMemoryProfileStore", "JsonFileProfileStore", "ProfileStore"]
