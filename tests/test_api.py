import threading
import time
from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from cycles import current_cycle, previous_cycle, utcnow
import main
from main import app, get_store

PLAN = {"liters_per_month": 100, "bonus_liters": 20, "delivery_day": "Monday", "delivery_time": "09:00"}


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def account_id(client):
    created = previous_cycle(utcnow())[0] - timedelta(days=40)
    resp = client.post("/api/owner/accounts", json={
        "name": "Ana", "business_name": "Ana's Cafe", "plan": PLAN, "created_at": created.isoformat(),
    })
    assert resp.status_code == 200
    return resp.json()["account_id"]


def _tomorrow():
    return (utcnow().date() + timedelta(days=1)).isoformat()


def test_root(client):
    body = client.get("/").json()
    assert body["status"] == "ok"
    assert body["liters_per_container"] == 19.5


def test_balance_with_rollover(client, account_id):
    now = utcnow()
    last = previous_cycle(now)[0] + timedelta(hours=1)
    this = current_cycle(now)[0] + timedelta(hours=1)
    client.post(f"/api/owner/accounts/{account_id}/deliveries",
                json={"date": last.isoformat(), "volume_containers": 3, "status": "Delivered"})
    resp = client.post(f"/api/owner/accounts/{account_id}/deliveries",
                       json={"date": this.isoformat(), "volume_containers": 2})
    assert resp.json()["liters"] == 39

    snap = client.get(f"/api/customer/{account_id}/balance").json()
    assert snap["rollover_liters"] == 61.5
    assert snap["current_balance"] == 142.5

    saved = client.post(f"/api/customer/{account_id}/save-liters").json()
    assert saved["saved_liters"] == 142.5
    assert client.post(f"/api/customer/{account_id}/save-liters").json()["saved_liters"] == 142.5
    assert client.get(f"/api/customer/{account_id}/balance").json()["current_balance"] == 0


def test_negative_delivery_rejected(client, account_id):
    resp = client.post(f"/api/owner/accounts/{account_id}/deliveries",
                       json={"date": utcnow().isoformat(), "volume_containers": -1})
    assert resp.status_code == 400


def test_refill_lifecycle(client, account_id):
    resp = client.post(f"/api/customer/{account_id}/refills", json={"requested_date": _tomorrow(), "containers": 0})
    assert resp.status_code == 400
    assert resp.json()["kind"] == "ValidationError"

    resp = client.post(f"/api/customer/{account_id}/refills", json={"requested_date": _tomorrow(), "containers": 2})
    assert resp.status_code == 200
    refill = resp.json()
    assert refill["status"] == "Requested"
    assert refill["notified"] is True

    active = client.get(f"/api/customer/{account_id}/refills/active").json()["active"]
    assert active["id"] == refill["id"]

    resp = client.post(f"/api/owner/refills/{refill['id']}/status", json={"status": "Out for Delivery"})
    assert resp.status_code == 409
    assert resp.json()["kind"] == "InvalidTransitionError"

    resp = client.post(f"/api/owner/refills/{refill['id']}/status", json={"status": "In Production"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "In Production"

    resp = client.post(f"/api/customer/refills/{refill['id']}/cancel")
    assert resp.json()["status"] == "Cancelled"
    assert client.post(f"/api/customer/refills/{refill['id']}/cancel").status_code == 200
    assert client.get(f"/api/customer/{account_id}/refills/active").json()["active"] is None

    titles = [n["title"] for n in client.get(f"/api/customer/{account_id}/notifications").json()]
    assert sorted(titles) == sorted([
        "Refill Request Received",
        "Refill Status: In Production",
        "Refill Status: Cancelled",
    ])


def test_schedule_update(client, account_id):
    resp = client.put(f"/api/customer/{account_id}/schedule",
                      json={"delivery_day": "Thursday", "delivery_time": "15:30"})
    assert resp.status_code == 200
    assert resp.json()["plan"]["delivery_day"] == "Thursday"
    assert resp.json()["plan"]["liters_per_month"] == 100

    resp = client.put(f"/api/customer/{account_id}/schedule", json={"delivery_day": "Funday", "delivery_time": "15:30"})
    assert resp.status_code == 400


def test_plan_change(client, account_id):
    resp = client.put(f"/api/owner/accounts/{account_id}/plan", json={**PLAN, "bonus_liters": 50})
    assert resp.status_code == 200
    assert client.get(f"/api/customer/{account_id}/balance").json()["allocation"] == 150


def test_unknown_and_malformed_ids(client):
    assert client.get("/api/customer/65a000000000000000000000/balance").status_code == 404
    assert client.get("/api/customer/nope/balance").status_code == 400
    assert client.post("/api/owner/refills/65a000000000000000000000/status",
                       json={"status": "In Production"}).status_code == 404


def test_schema(client):
    body = client.get("/schema").json()
    assert set(body) == {"account", "delivery", "refillrequest", "notification", "rolloveroverride"}


def test_delivery_scheduling_and_status(client, account_id):
    resp = client.post(f"/api/owner/accounts/{account_id}/deliveries",
                       json={"date": utcnow().isoformat(), "volume_containers": 2})
    assert resp.json()["notified"] is True
    delivery_id = resp.json()["delivery_id"]

    resp = client.post(f"/api/owner/deliveries/{delivery_id}/status", json={"status": "In Transit"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "In Transit"

    resp = client.post(f"/api/owner/deliveries/{delivery_id}/status",
                       json={"status": "Delivered", "proof_url": "https://example.com/proof.jpg"})
    assert resp.json()["proof_url"] == "https://example.com/proof.jpg"

    resp = client.post(f"/api/owner/deliveries/{delivery_id}/status", json={"status": "Pending"})
    assert resp.status_code == 409
    assert resp.json()["kind"] == "InvalidTransitionError"
    assert client.post("/api/owner/deliveries/65a000000000000000000000/status",
                       json={"status": "Delivered"}).status_code == 404

    titles = [n["title"] for n in client.get(f"/api/customer/{account_id}/notifications").json()]
    assert sorted(titles) == ["Delivery Delivered", "Delivery In Transit", "Delivery Scheduled"]


def test_store_is_built_once_under_concurrent_first_use(monkeypatch):
    built = []

    def slow_from_config(config):
        time.sleep(0.05)
        built.append(object())
        return built[-1]

    monkeypatch.setattr(main, "_store", None)
    monkeypatch.setattr(main, "StoreConfig", SimpleNamespace(from_env=lambda: None))
    monkeypatch.setattr(main, "MongoStore", SimpleNamespace(from_config=slow_from_config))

    barrier = threading.Barrier(6)
    seen = []

    def first_use():
        barrier.wait()
        seen.append(main.get_store())

    threads = [threading.Thread(target=first_use) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(built) == 1
    assert len(seen) == 6
    assert all(s is built[0] for s in seen)
