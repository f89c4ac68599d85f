import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import AssetNotFoundError

logger = logging.getLogger(__name__)

ASSET_ROUTE_PREFIX = "/project/asset"


class LocalStorageService:
    """Local file storage: one directory per project below storage_path."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.base_path = Path(self.settings.storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def project_dir(self, identifier: str) -> Path:
        return self.base_path / identifier

    def create_project_dir(self, identifier: str) -> Path:
        path = self.project_dir(identifier)
        path.mkdir(parents=True, exist_ok=False)
        return path

    def delete_project_dir(self, identifier: str) -> bool:
        """Delete a project's directory and everything in it."""
        path = self.project_dir(identifier)
        if path.exists():
            shutil.rmtree(path, ignore_errors=True)
            logger.info(f"[STORE] Deleted project directory {path}")
            return True
        return False

    def list_project_dirs(self) -> list[Path]:
        if not self.base_path.exists():
            return []
        return sorted(p for p in self.base_path.iterdir() if p.is_dir())

    def write_bytes(self, path: Path, data: bytes) -> Path:
        """Write a file atomically: a temp file in the same directory, then rename."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def write_text(self, path: Path, text: str) -> Path:
        return self.write_bytes(path, text.encode("utf-8"))

    def delete_file(self, path: Optional[Path]) -> bool:
        """Delete file."""
        if path is not None and path.exists():
            path.unlink()
            return True
        return False

    def asset_url(self, identifier: str, path: Path) -> str:
        """URL under which the asset route serves a file of a project."""
        return f"{ASSET_ROUTE_PREFIX}/{identifier}/{path.name}"

    def resolve_asset(self, identifier: str, name: str) -> Path:
        """
        Get the actual file path for serving.

        Raises:
            AssetNotFoundError: If the name escapes the project directory or
                the file does not exist
        """
        project_dir = self.project_dir(identifier).resolve()
        if project_dir.parent != self.base_path.resolve():
            raise AssetNotFoundError(f"No such asset: {name}")
        candidate = (project_dir / name).resolve()
        if candidate.parent != project_dir or name.startswith("."):
            raise AssetNotFoundError(f"No such asset: {name}")
        if not candidate.is_file():
            raise AssetNotFoundError(f"No such asset: {name}")
        return candidate
