from __future__ import annotations

import shutil
from pathlib import Path

from nipr_report.infra.ports.storage import StoragePort


class LocalFileStorage(StoragePort):
    def __init__(self, base_dir: Path, url_prefix: str = "/nipr-downloads"):
        self.base_dir = base_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def resolve(self, key: str) -> Path:
        dest = (self.base_dir / key).resolve()
        if not dest.is_relative_to(self.base_dir.resolve()):
            raise ValueError(f"Storage key escapes base directory: {key}")
        return dest

    def save_file(self, key: str, source: Path) -> str:
        dest = self.resolve(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)
        return self.build_url(key)

    def build_url(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"

    def delete(self, key: str) -> bool:
        dest = self.resolve(key)
        if not dest.exists():
            return False
        dest.unlink()
        return True
