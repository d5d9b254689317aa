"""Tests for the analytics job API endpoints."""

from datetime import datetime
from uuid import uuid4

import pytest


T0 = datetime(2026, 3, 1, 9, 0, 0)


def job_payload(document_id, snapshot_id, **overrides) -> dict:
    payload = {
        "user_id": str(uuid4()),
        "document_id": str(document_id),
        "job_type": "snapshot_analysis",
        "priority": 2,
        "input": {"snapshot_id": str(snapshot_id)},
    }
    payload.update(overrides)
    return payload


class TestJobSubmission:
    @pytest.mark.asyncio
    async def test_enqueue(self, client, test_document):
        response = await client.post("/analytics/jobs", json=job_payload(test_document.id, uuid4()))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "queued"
        assert data["priority"] == 2
        assert data["attempts"] == 0
        assert data["job_type"] == "snapshot_analysis"

    @pytest.mark.asyncio
    async def test_invalid_input(self, client, test_document):
        response = await client.post(
            "/analytics/jobs",
            json=job_payload(test_document.id, uuid4(), input={"snapshot": "x"}),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_job_type(self, client, test_document):
        response = await client.post(
            "/analytics/jobs",
            json=job_payload(test_document.id, uuid4(), job_type="sentiment"),
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_priority_out_of_range(self, client, test_document):
        response = await client.post("/analytics/jobs", json=job_payload(test_document.id, uuid4(), priority=9))
        assert response.status_code == 422


class TestJobStatus:
    @pytest.mark.asyncio
    async def test_get_job(self, client, test_document):
        created = (await client.post("/analytics/jobs", json=job_payload(test_document.id, uuid4()))).json()

        response = await client.get(f"/analytics/jobs/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    @pytest.mark.asyncio
    async def test_get_unknown_job(self, client):
        response = await client.get(f"/analytics/jobs/{uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel(self, client, test_document):
        created = (await client.post("/analytics/jobs", json=job_payload(test_document.id, uuid4()))).json()

        response = await client.delete(f"/analytics/jobs/{created['id']}")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        again = await client.delete(f"/analytics/jobs/{created['id']}")
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_cancel_unknown_job(self, client):
        response = await client.delete(f"/analytics/jobs/{uuid4()}")
        assert response.status_code == 404


class TestWorkerRun:
    @pytest.mark.asyncio
    async def test_run_batch_completes_job(self, client, test_document, make_snapshot):
        snapshot = await make_snapshot(test_document, "<p>one two three</p>", T0)
        created = (await client.post("/analytics/jobs", json=job_payload(test_document.id, snapshot.id))).json()

        response = await client.post("/analytics/worker/run", json={"batch_size": 5})

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 1
        assert data["succeeded"] == 1
        assert data["results"][0]["job_id"] == created["id"]

        job = (await client.get(f"/analytics/jobs/{created['id']}")).json()
        assert job["status"] == "completed"
        assert job["output"]["metrics"]["word_count"] == 3

    @pytest.mark.asyncio
    async def test_run_without_body(self, client):
        response = await client.post("/analytics/worker/run")

        assert response.status_code == 200
        assert response.json() == {"processed": 0, "succeeded": 0, "failed": 0, "results": []}

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, client):
        response = await client.post("/analytics/worker/run", json={"batch_size": 0})
        assert response.status_code == 422


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
