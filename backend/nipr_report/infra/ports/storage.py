from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class StoragePort(ABC):
    @abstractmethod
    def save_file(self, key: str, source: Path) -> str:
        """Copy a local file under ``key`` and return a retrievable URL or path."""

    @abstractmethod
    def build_url(self, key: str) -> str:
        """Resolve a public URL (or local path) for a key."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a stored file; return False when nothing was there."""
