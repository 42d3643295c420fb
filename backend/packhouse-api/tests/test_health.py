# tests/test_health.py
def test_root_healthz(client):
    r = client.get("/healthz", headers={"X-API-Key": "test-key"})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["env"] == "dev"


def test_routes_need_api_key(client):
    r = client.get("/intake/orders")
    assert r.status_code == 401

    r = client.get("/intake/orders", headers={"X-API-Key": "wrong"})
    assert r.status_code == 401
