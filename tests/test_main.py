import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from careslot.core.database import get_db
from careslot.main import app


class _UnreachableSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))


def override_get_db_unreachable():
    yield _UnreachableSession()


@pytest.fixture
def client():
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


class TestApplicationShell:

    def test_health_check(self, client):
        """Test health endpoint reports the version and a working database."""
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "ok"
        assert "version" in data
        assert "X-Process-Time" in response.headers

    def test_health_check_database_down(self, client):
        """Test health endpoint returns 503 when the database is unreachable."""
        app.dependency_overrides[get_db] = override_get_db_unreachable
        try:
            response = client.get("/health")
        finally:
            app.dependency_overrides.pop(get_db, None)

        assert response.status_code == 503
        assert response.json()["message"] == "Database unavailable"

    def test_api_info(self, client):
        """Test API info endpoint."""
        response = client.get("/api/v1/info")
        assert response.status_code == 200

        data = response.json()
        assert data["scheduling"]["default_slot_duration"] == 30
        assert data["scheduling"]["proposal_expiry_days"] == 7

    def test_unknown_route(self, client):
        """Test unknown route returns the JSON 404 body."""
        response = client.get("/api/v1/nowhere")
        assert response.status_code == 404
        assert response.json()["path"] == "/api/v1/nowhere"


if __name__ == "__main__":
    pytest.main([__file__])
