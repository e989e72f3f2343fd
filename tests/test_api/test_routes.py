"""
HTTP surface tests: status mapping, identity headers and request plumbing.
"""

import pytest
from fastapi.testclient import TestClient

from app.api import health
from app.config import settings
from app.dependencies import get_service
from app.main import create_app
from app.pipeline.service import AssetPipelineService
from tests.conftest import make_staged, seed_session

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def service(repository, taxonomy):
    return AssetPipelineService(repository, taxonomy)


@pytest.fixture
def client(service):
    app = create_app()
    app.dependency_overrides[get_service] = lambda: service
    return TestClient(app)


class TestUploads:

    def test_upload_creates_session(self, client, repository, holdings_csv):
        response = client.post(
            "/api/v1/uploads",
            files=[("files", ("hdfc.csv", holdings_csv, "text/csv"))],
            headers=USER,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"]
        assert body["summary"]["total_assets"] == 3
        assert body["summary"]["upload_id"] in repository.uploads

    def test_unsupported_batch_is_422(self, client):
        response = client.post(
            "/api/v1/uploads",
            files=[("files", ("notes.txt", b"x" * 100, "text/plain"))],
            headers=USER,
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "ALL_FILES_FAILED"

    def test_user_header_required(self, client, holdings_csv):
        response = client.post("/api/v1/uploads", files=[("files", ("hdfc.csv", holdings_csv, "text/csv"))])
        assert response.status_code == 401


class TestReviews:

    def test_review_and_patch(self, client, repository):
        upload = seed_session(repository, [make_staged("a", "TCS", "100")])

        response = client.patch(
            f"/api/v1/reviews/{upload.id}/assets",
            json={"patches": [{"id": "a", "current_value": "125.50"}]},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["updated_count"] == 1

        review = client.get(f"/api/v1/reviews/{upload.id}", headers=USER).json()
        assert review["assets"][0]["current_value"] == "125.50"
        assert review["assets"][0]["is_edited"]

    def test_other_users_session_is_404(self, client, repository):
        upload = seed_session(repository, [make_staged("a", "TCS")], user_id="someone-else")
        response = client.get(f"/api/v1/reviews/{upload.id}", headers=USER)
        assert response.status_code == 404
        assert response.json()["error_code"] == "SESSION_NOT_FOUND"

    def test_finalize_nothing_selected_is_400(self, client, repository):
        upload = seed_session(repository, [make_staged("a", "TCS")])
        response = client.post(f"/api/v1/reviews/{upload.id}/finalize", json={"selected_asset_ids": []}, headers=USER)
        assert response.status_code == 400
        assert response.json()["error_code"] == "NO_ASSETS_SELECTED"

    def test_finalize_then_cancel_conflicts(self, client, repository):
        upload = seed_session(repository, [make_staged("a", "TCS")])
        response = client.post(f"/api/v1/reviews/{upload.id}/finalize", json={"selected_asset_ids": ["a"]},
                               headers=USER)
        assert response.status_code == 200
        assert response.json()["assets_saved"] == 1

        response = client.delete(f"/api/v1/reviews/{upload.id}", headers=USER)
        assert response.status_code == 409
        assert response.json()["error_code"] == "SESSION_FINALIZED"


class TestSnapshotsAndTaxonomy:

    def test_nearby_invalid_date_is_400(self, client):
        response = client.get("/api/v1/snapshots/nearby", params={"statement_date": "31/03/2024"}, headers=USER)
        assert response.status_code == 400
        assert response.json()["error_code"] == "INVALID_STATEMENT_DATE"

    def test_taxonomy(self, client, taxonomy):
        body = client.get("/api/v1/taxonomy").json()
        assert body["total"] == len(taxonomy.mappings)
        assert "ppf" in body["by_class"]["debt"]


class TestApiKey:

    def test_key_enforced_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "API_KEY", "secret")
        assert client.get("/api/v1/taxonomy").status_code == 401
        assert client.get("/api/v1/taxonomy", headers={"X-API-Key": "secret"}).status_code == 200


class TestHealth:

    def test_degraded_without_database(self, client, monkeypatch):
        async def unreachable():
            return False, "connection refused"

        monkeypatch.setattr(health, "_database_status", unreachable)
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["database_error"] == "connection refused"
        assert client.get("/health/ready").status_code == 503
