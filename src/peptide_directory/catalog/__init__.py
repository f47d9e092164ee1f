"""Catalog store and read-side queries.

Modules:
- db: SQLite location, schema and upserts
- seed: JSON seed loader
- service: typed queries used by the API
- admin: validated admin writes (imported directly; it depends on content)
"""

from .db import DirectoryDatabase
from .seed import load_seed
from .service import DirectoryService

__all__ = [
    "DirectoryDatabase",
    "DirectoryService",
    "load_seed",
]
