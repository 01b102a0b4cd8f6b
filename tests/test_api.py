"""Tests for the HTTP routes, backed by the in-memory store."""

import pytest
from fastapi.testclient import TestClient

from knowledge_garden.main import create_app


@pytest.fixture
def client(services):
    """Test client with startup hooks run (default buckets seeded)."""
    with TestClient(create_app(services=services)) as test_client:
        yield test_client


def _upload(client, bucket_id, name, content, content_type="text/plain", **form):
    return client.post(
        f"/api/buckets/{bucket_id}/documents",
        files={"file": (name, content, content_type)},
        data=form,
    )


class TestBuckets:
    def test_default_buckets_seeded(self, client):
        response = client.get("/api/buckets")

        assert response.status_code == 200
        assert {b["id"] for b in response.json()} == {"hr-docs", "reports", "marketing"}

    def test_create_and_delete_bucket(self, client):
        created = client.post("/api/buckets", json={"name": "Legal", "color": "#112233"})
        assert created.status_code == 201
        bucket_id = created.json()["id"]

        deleted = client.delete(f"/api/buckets/{bucket_id}")

        assert deleted.status_code == 200
        assert deleted.json()["deleted"] == bucket_id
        assert bucket_id not in {b["id"] for b in client.get("/api/buckets").json()}

    def test_invalid_color_rejected(self, client):
        assert client.post("/api/buckets", json={"name": "X", "color": "red"}).status_code == 422

    def test_delete_unknown_bucket(self, client):
        assert client.delete("/api/buckets/missing").status_code == 404

    def test_delete_bucket_reports_cascade(self, client, sample_policy_text):
        _upload(client, "reports", "policy.txt", sample_policy_text.encode())

        body = client.delete("/api/buckets/reports").json()

        assert body["deleted_resources"] == 1
        assert body["deleted_embeddings"] == 1


class TestDocuments:
    def test_upload_and_list(self, client, sample_policy_text):
        response = _upload(client, "hr-docs", "policy.txt", sample_policy_text.encode(),
                           description="Leave", uploaded_by="hr")

        assert response.status_code == 201
        assert response.json()["chunks_created"] == 1

        docs = client.get("/api/buckets/hr-docs/documents").json()
        assert [d["file_name"] for d in docs] == ["policy.txt"]
        buckets = {b["id"]: b for b in client.get("/api/buckets").json()}
        assert buckets["hr-docs"]["document_count"] == 1

    def test_unsupported_type(self, client):
        response = _upload(client, "hr-docs", "archive.zip", b"PK", "application/zip")

        assert response.status_code == 415

    def test_empty_document(self, client):
        response = _upload(client, "hr-docs", "blank.txt", b"   ")

        assert response.status_code == 400

    def test_upload_to_unknown_bucket(self, client):
        response = _upload(client, "missing", "a.txt", b"hello")

        assert response.status_code == 404

    def test_list_unknown_bucket(self, client):
        assert client.get("/api/buckets/missing/documents").status_code == 404

    def test_delete_document(self, client, sample_policy_text):
        _upload(client, "hr-docs", "policy.txt", sample_policy_text.encode())

        response = client.delete("/api/buckets/hr-docs/documents/policy.txt")

        assert response.status_code == 200
        assert response.json()["chunks"] == 1
        assert client.get("/api/buckets/hr-docs/documents").json() == []
        assert client.delete("/api/buckets/hr-docs/documents/policy.txt").status_code == 404


class TestKnowledge:
    def test_search_with_similar_questions(self, client, sample_policy_text, sample_travel_text):
        _upload(client, "hr-docs", "policy.txt", sample_policy_text.encode())
        _upload(client, "hr-docs", "travel.txt", sample_travel_text.encode())

        response = client.post("/api/search", json={
            "question": "vacation days",
            "similar_questions": ["annual leave allowance for employees", "vacation days"],
            "bucket_id": "hr-docs",
        })

        assert response.status_code == 200
        body = response.json()
        contents = [r["content"] for r in body["results"]]
        assert len(contents) == len(set(contents))
        assert body["results"][0]["file_name"] == "policy.txt"
        assert body["sources"][0]["file_name"] == "policy.txt"

    def test_search_unknown_bucket(self, client):
        response = client.post("/api/search", json={"question": "q", "bucket_id": "missing"})

        assert response.status_code == 404

    def test_search_requires_question(self, client):
        assert client.post("/api/search", json={"question": ""}).status_code == 422

    def test_analyze_duplicates(self, client, sample_csv_bytes):
        _upload(client, "reports", "people.csv", sample_csv_bytes, "text/csv")

        response = client.post("/api/analyze", json={
            "question": "Find duplicates in my sales data",
            "bucket_id": "reports",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["type"] == "sql"
        first = body["sql_results"][0]["results"][0]
        assert first["data"] == [
            {"name": "Alice", "email": "alice@example.com", "age": "30", "duplicate_count": 2}
        ]

    def test_analyze_forced_rag(self, client, sample_policy_text):
        _upload(client, "hr-docs", "policy.txt", sample_policy_text.encode())

        response = client.post("/api/analyze", json={
            "question": "count vacation days",
            "bucket_id": "hr-docs",
            "mode": "rag",
        })

        body = response.json()
        assert body["type"] == "rag"
        assert body["rag_results"][0]["file_name"] == "policy.txt"

    def test_analyze_rejects_unknown_mode(self, client):
        assert client.post("/api/analyze", json={"question": "q", "mode": "magic"}).status_code == 422
