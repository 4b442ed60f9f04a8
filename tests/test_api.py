"""Trigger API: bearer guard and the maintenance endpoint."""
import httpx
import pytest
from fastapi.testclient import TestClient

from qrydex.config import get_settings
from qrydex.main import app
from qrydex.queue.lease import MemoryKeyLease
from qrydex.services import build_services
from qrydex.store.memory import MemoryStore

from conftest import FakeClock, mock_client, put_business

SECRET = "test-cron-secret"


def brreg(request):
    org = request.url.path.rsplit("/", 1)[-1]
    return httpx.Response(200, json={"organisasjonsnummer": org, "navn": "NORDIC TOOLS AS"})


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def client(store):
    clock = FakeClock()
    services = build_services(
        get_settings(),
        store=store,
        client=mock_client(brreg),
        lease=MemoryKeyLease(clock),
        clock=clock,
    )
    app.state.services = services
    app.state.cron_secret = SECRET
    yield TestClient(app)
    app.state.services = None
    app.state.cron_secret = None


def _auth(token=SECRET, scheme="Bearer"):
    return {"Authorization": f"{scheme} {token}"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Request-Id" in response.headers


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer wrong-secret"},
    {"Authorization": f"Basic {SECRET}"},
    {"Authorization": "Bearer"},
])
def test_maintenance_requires_secret(client, headers):
    response = client.post("/v1/cron/maintenance", headers=headers)
    assert response.status_code == 401


def test_maintenance_runs_and_reports(client, store):
    put_business(store, org_number="923609016", last_verified_at=None)

    response = client.post("/v1/cron/maintenance?limit=5", headers=_auth())

    assert response.status_code == 200
    assert response.json() == {"success": True, "selected": 1, "updated": 1, "failed": 0,
                                "skipped": 0, "rescans": 0}
    assert store.get("businesses", org_number="923609016")["verification_status"] == "verified"


def test_maintenance_limit_validated(client):
    response = client.post("/v1/cron/maintenance?limit=0", headers=_auth())
    assert response.status_code == 422


def test_queue_stats(client):
    response = client.get("/v1/queue/stats", headers=_auth())
    assert response.status_code == 200
    assert response.json()["total"] == 0
