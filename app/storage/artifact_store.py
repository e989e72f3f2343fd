"""
Upload artifact store on the local filesystem.

Raw uploads are kept when KEEP_RAW_UPLOADS is set; every successful ingest
also leaves its batch summary. Everything of an upload lives under one
directory so purging a session removes it in one go.
"""

import json
import shutil
from pathlib import Path
from typing import Optional

import structlog

from app.config import settings
from app.storage.paths import resolve_under

logger = structlog.get_logger(__name__)


class ArtifactStore:

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.ARTIFACT_ROOT)
        self.root.mkdir(parents=True, exist_ok=True)

    def _writable(self, relative_path: str) -> Path:
        full_path = resolve_under(self.root, relative_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def save_bytes(self, relative_path: str, data: bytes) -> str:
        self._writable(relative_path).write_bytes(data)
        logger.debug("artifact_saved", path=relative_path, size_bytes=len(data))
        return relative_path

    def save_json(self, relative_path: str, data: dict) -> str:
        self._writable(relative_path).write_text(json.dumps(data, default=str, indent=2), encoding="utf-8")
        logger.debug("artifact_saved", path=relative_path, kind="json")
        return relative_path

    def load_json(self, relative_path: str) -> dict:
        full_path = resolve_under(self.root, relative_path)
        if not full_path.is_file():
            raise FileNotFoundError(f"Artifact not found: {relative_path}")
        return json.loads(full_path.read_text(encoding="utf-8"))

    def list_artifacts(self, upload_id: str) -> list[str]:
        upload_dir = resolve_under(self.root, upload_id)
        if not upload_dir.is_dir():
            return []
        return sorted(p.relative_to(upload_dir.parent).as_posix() for p in upload_dir.rglob("*") if p.is_file())

    def delete_upload_artifacts(self, upload_id: str) -> int:
        """Remove an upload's directory. Returns how many files it held."""
        files = self.list_artifacts(upload_id)
        if files:
            shutil.rmtree(resolve_under(self.root, upload_id))
            logger.info("upload_artifacts_deleted", upload_id=upload_id, count=len(files))
        return len(files)
