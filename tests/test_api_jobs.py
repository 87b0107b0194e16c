"""
Tests for the jobs API endpoints using FastAPI TestClient.
"""

import json
from datetime import timedelta

import pytest

from streetwise.jobs import JobManager
from web.api.auth import create_access_token
from web.api.routers.jobs import format_event, job_event


@pytest.fixture
def job_manager(temp_db):
    return JobManager(temp_db)


class TestAuthentication:
    """Requests without a valid token are rejected."""

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/jobs"),
        ("post", "/api/jobs"),
        ("get", "/api/jobs/stream"),
        ("get", "/api/jobs/1"),
        ("delete", "/api/jobs/1"),
        ("post", "/api/jobs/1/retry"),
    ])
    def test_requires_token(self, client, method, path):
        """Test that every job route returns 401 without a token."""
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.json() == {"success": False, "error": "Unauthorized"}
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token(self, client):
        """Test that a garbage token is rejected."""
        response = client.get("/api/jobs", headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_expired_token(self, client):
        """Test that an expired token is rejected."""
        token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(minutes=-1))
        response = client.get("/api/jobs", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestGetJob:
    """Tests for GET /api/jobs/{id}."""

    def test_get_job(self, client, auth_headers, job_manager):
        """Test fetching an owned job."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl", {"url": "https://a.example"})

        response = client.get(f"/api/jobs/{job_id}", headers=auth_headers("user-1"))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["id"] == job_id
        assert body["data"]["status"] == "queued"
        assert body["data"]["input"] == {"url": "https://a.example"}
        assert body["data"]["retryCount"] == 0
        assert body["data"]["maxRetries"] == 3

    def test_get_missing_job(self, client, auth_headers):
        """Test that an unknown job is 404."""
        response = client.get("/api/jobs/999", headers=auth_headers())

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Job not found"}

    def test_get_other_users_job(self, client, auth_headers, job_manager):
        """Test that another user's job is 403."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl")

        response = client.get(f"/api/jobs/{job_id}", headers=auth_headers("user-2"))

        assert response.status_code == 403
        assert response.json() == {"success": False, "error": "Access denied"}

    def test_get_invalid_id(self, client, auth_headers):
        """Test that a non-numeric ID is a 400 with field details."""
        response = client.get("/api/jobs/abc", headers=auth_headers())

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["details"][0]["field"] == "job_id"


class TestCancelJob:
    """Tests for DELETE /api/jobs/{id}."""

    def test_cancel_queued_job(self, client, auth_headers, job_manager):
        """Test cancelling a queued job."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl")

        response = client.delete(f"/api/jobs/{job_id}", headers=auth_headers("user-1"))

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "cancelled"
        assert job_manager.get_job(job_id)["status"] == "cancelled"

    def test_cancel_terminal_job(self, client, auth_headers, job_manager):
        """Test that cancelling a cancelled job is 400."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl")
        job_manager.cancel_job(job_id)

        response = client.delete(f"/api/jobs/{job_id}", headers=auth_headers("user-1"))

        assert response.status_code == 400
        assert response.json()["error"] == "Cannot cancel job in status: cancelled"

    def test_cancel_other_users_job(self, client, auth_headers, job_manager):
        """Test that another user cannot cancel the job."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl")

        response = client.delete(f"/api/jobs/{job_id}", headers=auth_headers("user-2"))

        assert response.status_code == 403
        assert job_manager.get_job(job_id)["status"] == "queued"

    def test_cancel_missing_job(self, client, auth_headers):
        response = client.delete("/api/jobs/999", headers=auth_headers())
        assert response.status_code == 404


class TestRetryJob:
    """Tests for POST /api/jobs/{id}/retry."""

    def failed_job(self, job_manager, max_retries=3):
        job_id = job_manager.enqueue_job("user-1", "website_crawl", max_retries=max_retries)
        job_manager.claim_next_job()
        job_manager.fail_job(job_id, "Timeout")
        return job_id

    def test_retry_failed_job(self, client, auth_headers, job_manager):
        """Test retrying a failed job."""
        job_id = self.failed_job(job_manager)

        response = client.post(f"/api/jobs/{job_id}/retry", headers=auth_headers("user-1"))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "queued"
        assert data["retryCount"] == 1

    def test_retry_queued_job(self, client, auth_headers, job_manager):
        """Test that only failed jobs can be retried."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl")

        response = client.post(f"/api/jobs/{job_id}/retry", headers=auth_headers("user-1"))

        assert response.status_code == 400
        assert response.json()["error"] == "Only failed jobs can be retried"

    def test_retry_budget_exhausted(self, client, auth_headers, job_manager):
        """Test that a job out of retries is rejected."""
        job_id = self.failed_job(job_manager, max_retries=0)

        response = client.post(f"/api/jobs/{job_id}/retry", headers=auth_headers("user-1"))

        assert response.status_code == 400
        assert response.json()["error"] == "Job has exceeded maximum retry attempts"

    def test_retry_other_users_job(self, client, auth_headers, job_manager):
        job_id = self.failed_job(job_manager)

        response = client.post(f"/api/jobs/{job_id}/retry", headers=auth_headers("user-2"))

        assert response.status_code == 403


class TestListAndCreate:
    """Tests for GET and POST /api/jobs."""

    def test_create_job(self, client, auth_headers, job_manager):
        """Test queueing a job; extra fields become its input."""
        response = client.post(
            "/api/jobs",
            json={"type": "serp_tracking", "priority": 3, "keywords": ["plumber"]},
            headers=auth_headers("user-1"),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "queued"

        job = job_manager.get_job(data["jobId"])
        assert job["user_id"] == "user-1"
        assert job["priority"] == 3
        assert job["input"] == {"keywords": ["plumber"]}

    def test_create_without_type(self, client, auth_headers):
        """Test that type is required."""
        response = client.post("/api/jobs", json={}, headers=auth_headers())

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Job type is required"
        assert body["details"] == [{"field": "type", "message": "type is required"}]

    def test_create_unknown_type(self, client, auth_headers):
        response = client.post("/api/jobs", json={"type": "mystery"}, headers=auth_headers())
        assert response.status_code == 400

    def test_list_pagination(self, client, auth_headers, job_manager):
        """Test that pagination reports the real total."""
        ids = [job_manager.enqueue_job("user-1", "website_crawl") for _ in range(3)]
        job_manager.enqueue_job("user-2", "website_crawl")

        response = client.get("/api/jobs?limit=2", headers=auth_headers("user-1"))

        data = response.json()["data"]
        assert [job["id"] for job in data["jobs"]] == [ids[2], ids[1]]
        assert data["pagination"] == {"limit": 2, "offset": 0, "total": 3, "hasMore": True}

    def test_list_limit_capped(self, client, auth_headers):
        response = client.get("/api/jobs?limit=500", headers=auth_headers())
        assert response.json()["data"]["pagination"]["limit"] == 50

    def test_list_active_only_with_stats(self, client, auth_headers, job_manager):
        """Test activeOnly returns running jobs and includeStats adds statistics."""
        running = job_manager.enqueue_job("user-1", "website_crawl")
        job_manager.enqueue_job("user-1", "website_crawl")
        job_manager.claim_next_job()

        response = client.get(
            "/api/jobs?activeOnly=true&includeStats=true", headers=auth_headers("user-1")
        )

        data = response.json()["data"]
        assert [job["id"] for job in data["jobs"]] == [running]
        assert data["pagination"] is None
        assert data["statistics"]["total"] == 2
        assert data["statistics"]["running"] == 1


class TestJobStream:
    """Tests for the job stream payloads."""

    def test_no_jobs_event(self, job_manager):
        assert job_event(job_manager, "user-1") == {
            "type": "no_jobs", "data": {"message": "No active jobs"}
        }

    def test_job_update_event(self, job_manager):
        """Test that the event describes the running job."""
        job_id = job_manager.enqueue_job("user-1", "website_crawl")
        job_manager.claim_next_job()
        job_manager.update_progress(job_id, 40, "Extracting topics")

        event = job_event(job_manager, "user-1")

        assert event["type"] == "job_update"
        assert event["data"]["id"] == job_id
        assert event["data"]["progress"] == 40
        assert event["data"]["currentStep"] == "Extracting topics"

    def test_format_event(self):
        encoded = format_event({"type": "connected"})
        assert encoded.startswith("data: ")
        assert encoded.endswith("\n\n")
        assert json.loads(encoded[len("data: "):]) == {"type": "connected"}


class TestErrorEnvelope:
    """Tests for the error envelope on unexpected failures."""

    def test_unhandled_error_is_500(self, client, auth_headers, monkeypatch):
        """Test that an unexpected exception becomes a generic 500."""
        def explode(self, job_id, user_id):
            raise RuntimeError("database on fire")

        monkeypatch.setattr(JobManager, "get_user_job", explode)

        response = client.get("/api/jobs/1", headers=auth_headers())

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Internal server error"}

    def test_unknown_route(self, client):
        response = client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ok"
