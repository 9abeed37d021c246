# tests/test_health.py
from fastapi.testclient import TestClient


def test_health_responds(client: TestClient) -> None:
    """Verify that the health endpoint responds."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
