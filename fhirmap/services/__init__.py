"""Reference collaborators used by the CLI and tests."""

from .complex_store import FileSystemComplexDataStore
from .repository import FixedLocale, InMemoryRepository, load_repository

__all__ = [
    "FileSystemComplexDataStore",
    "FixedLocale",
    "InMemoryRepository",
    "load_repository",
]
