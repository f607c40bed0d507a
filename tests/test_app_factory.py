"""Tests for the application factory."""

from unittest.mock import patch

from fastapi.testclient import TestClient

from roomblock.api.factory import create_app
from roomblock.observability.context import CORRELATION_ID_HEADER

from .helpers import authed_app


class TestCreateApp:
    def test_health(self):
        response = TestClient(create_app()).get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_no_docs(self):
        assert TestClient(create_app()).get("/docs").status_code == 404

    def test_every_router_mounted(self):
        client = TestClient(create_app())
        # Mounted routes reject the anonymous request; unknown paths are 404.
        assert client.post("/bookings").status_code == 401
        assert client.get("/hotels/1").status_code == 401
        assert client.get("/room-types/1/availability").status_code == 401
        assert client.post("/events/1/notifications/send-updates").status_code == 401
        assert client.get("/email-notifications/last").status_code == 401
        assert client.get("/no-such-route").status_code == 404


class TestCorrelationId:
    def test_generated_when_absent(self):
        response = TestClient(create_app()).get("/health")
        assert len(response.headers[CORRELATION_ID_HEADER]) == 32

    def test_echoed_when_present(self):
        response = TestClient(create_app()).get(
            "/health", headers={CORRELATION_ID_HEADER: "abc-123"}
        )
        assert response.headers[CORRELATION_ID_HEADER] == "abc-123"


class TestValidationErrors:
    def test_body_errors_are_400_with_field_names(self):
        with patch("roomblock.api.rbac._get_staff_role", return_value="coordinator"):
            client = TestClient(authed_app(create_app()))
            response = client.post("/bookings", json={"eventId": "seven"})
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert "eventId" in detail
        assert "personId" in detail
