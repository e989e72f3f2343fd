"""
Artifact paths, relative to ARTIFACT_ROOT and grouped by upload id:

    {upload_id}/raw/{index:02d}_{file name}
    {upload_id}/summary.json
"""

import re
from pathlib import Path, PurePosixPath

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class ArtifactPathError(ValueError):
    pass


def safe_file_name(file_name: str) -> str:
    """Basename with anything outside [A-Za-z0-9._-] collapsed to '_'."""
    base = PurePosixPath(file_name.replace("\\", "/")).name
    cleaned = _UNSAFE_CHARS.sub("_", base).strip("._")
    return cleaned or "upload"


def raw_upload_path(upload_id: str, index: int, file_name: str) -> str:
    """The index keeps same-named files of one batch apart."""
    return f"{upload_id}/raw/{index:02d}_{safe_file_name(file_name)}"


def ingest_summary_path(upload_id: str) -> str:
    return f"{upload_id}/summary.json"


def resolve_under(root: Path, relative_path: str) -> Path:
    """Absolute path of an artifact. Raises ArtifactPathError for paths leaving the root."""
    full_path = (root / relative_path).resolve()
    if full_path != root.resolve() and root.resolve() not in full_path.parents:
        raise ArtifactPathError(f"Artifact path escapes the store: {relative_path}")
    return full_path
