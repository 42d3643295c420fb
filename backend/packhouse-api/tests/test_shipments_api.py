# tests/test_shipments_api.py
H = {"X-API-Key": "test-key"}


def test_multi_shipment_over_http(client, packed_session):
    s1 = packed_session("Customer A", cartons=2)
    s2 = packed_session("Customer B")

    available = client.get("/shipments/available-sessions", headers=H).json()
    assert {s["id"] for s in available} == {s1.id, s2.id}

    r = client.post("/shipments/multi", json={"session_ids": [s1.id, s2.id], "created_by": "Dispatch"}, headers=H)
    assert r.status_code == 200
    result = r.json()
    shipment_id = result["shipment"]["id"]
    assert result["total_cartons"] == 3
    assert result["customer_count"] == 2

    r = client.post("/shipments/multi", json={"session_ids": [s1.id, s2.id], "created_by": "Dispatch"}, headers=H)
    assert r.status_code == 409
    assert r.json()["detail"]["kind"] == "AlreadyShipped"
    assert sorted(r.json()["detail"]["session_ids"]) == sorted([s1.id, s2.id])

    details = client.get(f"/shipments/multi/{shipment_id}", headers=H).json()
    assert set(details["cartons_by_customer"]) == {"Customer A", "Customer B"}
    assert client.get(f"/shipments/single/{shipment_id}", headers=H).status_code == 404

    r = client.post(
        f"/shipments/single/{shipment_id}/configure",
        json={"shipment_type": "truck", "truck_details": {"driver": "J. Dlamini"}},
        headers=H,
    )
    assert r.status_code == 409
    assert r.json()["detail"]["kind"] == "WrongShipmentKind"

    r = client.post(
        f"/shipments/multi/{shipment_id}/configure",
        json={"shipment_type": "truck", "truck_details": {"driver": "J. Dlamini"}, "loading_strategy": "lifo"},
        headers=H,
    )
    assert r.status_code == 200
    assert r.json()["status"] == "pending_dispatch"
    assert r.json()["loading_strategy"] == "lifo"

    pending = client.get("/shipments", params={"status": "pending_dispatch"}, headers=H).json()
    assert [s["id"] for s in pending] == [shipment_id]


def test_single_shipment_and_delete(client, packed_session):
    session = packed_session()

    r = client.post("/shipments/single", json={"session_id": session.id, "created_by": "Dispatch"}, headers=H)
    shipment = r.json()["shipment"]
    assert shipment["shipment_id"].startswith("SO-")
    assert client.get(f"/shipments/{shipment['id']}", headers=H).json()["total_cartons"] == 1

    drafts = client.get("/shipments", headers=H).json()
    assert [s["id"] for s in drafts] == [shipment["id"]]

    r = client.delete(f"/shipments/{shipment['id']}", headers=H)
    assert r.json() == {"ok": True, "released_sessions": [session.id]}
    assert client.get("/shipments", headers=H).json() == []
    assert [s["id"] for s in client.get("/shipments/available-sessions", headers=H).json()] == [session.id]


def test_configure_requires_type_details(client, packed_session):
    session = packed_session()
    shipment_id = client.post(
        "/shipments/single", json={"session_id": session.id, "created_by": "Dispatch"}, headers=H
    ).json()["shipment"]["id"]

    r = client.post(f"/shipments/{shipment_id}/configure", json={"shipment_type": "courier"}, headers=H)
    assert r.status_code == 422
    assert r.json()["detail"]["kind"] == "InvalidInput"


def test_multi_with_incomplete_set(client, packed_session):
    s1 = packed_session()
    r = client.post("/shipments/multi", json={"session_ids": [s1.id, "ghost"], "created_by": "Dispatch"}, headers=H)
    assert r.status_code == 409
    assert r.json()["detail"]["kind"] == "IncompleteSessionSet"
    assert r.json()["detail"]["missing"] == ["ghost"]
