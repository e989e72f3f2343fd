"""
Tests for artifact paths and the filesystem artifact store.
"""

import pytest

from app.storage.artifact_store import ArtifactStore
from app.storage.paths import ArtifactPathError, ingest_summary_path, raw_upload_path, safe_file_name


class TestPaths:

    @pytest.mark.parametrize("file_name,expected", [
        ("holdings.csv", "holdings.csv"),
        ("C:\\Users\\me\\Zerodha Holdings (1).xlsx", "Zerodha_Holdings_1_.xlsx"),
        ("../../etc/passwd", "passwd"),
        ("...", "upload"),
    ])
    def test_safe_file_name(self, file_name, expected):
        assert safe_file_name(file_name) == expected

    def test_layout(self):
        assert raw_upload_path("tmp_20240410_abc", 3, "cas.pdf") == "tmp_20240410_abc/raw/03_cas.pdf"
        assert ingest_summary_path("tmp_20240410_abc") == "tmp_20240410_abc/summary.json"


class TestArtifactStore:

    def test_round_trip_and_listing(self, tmp_path):
        store = ArtifactStore(root=str(tmp_path))
        store.save_bytes(raw_upload_path("tmp_1", 0, "a.csv"), b"x,y\n")
        store.save_json(ingest_summary_path("tmp_1"), {"total_assets": 2})

        assert store.load_json("tmp_1/summary.json") == {"total_assets": 2}
        assert store.list_artifacts("tmp_1") == ["tmp_1/raw/00_a.csv", "tmp_1/summary.json"]
        assert store.list_artifacts("tmp_2") == []

    def test_delete_upload(self, tmp_path):
        store = ArtifactStore(root=str(tmp_path))
        store.save_bytes("tmp_1/raw/00_a.csv", b"1")
        store.save_bytes("tmp_2/raw/00_b.csv", b"2")

        assert store.delete_upload_artifacts("tmp_1") == 1
        assert store.list_artifacts("tmp_1") == []
        assert store.list_artifacts("tmp_2") == ["tmp_2/raw/00_b.csv"]
        assert store.delete_upload_artifacts("tmp_1") == 0

    def test_missing_json(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ArtifactStore(root=str(tmp_path)).load_json("tmp_1/summary.json")

    def test_paths_cannot_escape_root(self, tmp_path):
        store = ArtifactStore(root=str(tmp_path / "artifacts"))
        with pytest.raises(ArtifactPathError):
            store.save_bytes("../outside.bin", b"x")
