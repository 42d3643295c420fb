# tests/test_shipments.py
import threading

import pytest

from packhouse.errors import (
    AlreadyShipped,
    IncompleteSessionSet,
    InvalidInput,
    NoSealedCartons,
    NotFound,
    PreconditionFailed,
    WrongShipmentKind,
)
from packhouse.models import (
    BoxConfiguration,
    CartonStatus,
    LoadingStrategy,
    ShipmentKind,
    ShipmentStatus,
    ShipmentType,
)

TRUCK = {"driver": "J. Dlamini", "registration": "ND 123-456"}


def test_multi_consolidation(services, packed_session, conn):
    s1 = packed_session("Customer A", cartons=2)
    s2 = packed_session("Customer B", cartons=1)

    result = services.shipments.create_multi([s1.id, s2.id], "Dispatch")

    assert result.shipment.shipment_id.startswith("MSO-")
    assert result.shipment.order_type == ShipmentKind.MULTI
    assert result.shipment.status == ShipmentStatus.DRAFT
    assert result.shipment.destination == "Multiple Destinations"
    assert result.shipment.total_cartons == 3
    assert result.total_cartons == 3
    assert result.customer_count == 2
    assert [(link.session_id, link.carton_count) for link in result.sessions] == [(s1.id, 2), (s2.id, 1)]

    for sid in (s1.id, s2.id):
        session = services.sessions.get(sid)
        assert session.shipment_created is True
        assert session.shipment_order_id == result.shipment.id

    with pytest.raises(AlreadyShipped) as exc:
        services.shipments.create_multi([s1.id, packed_session("Customer C").id], "Dispatch")
    assert exc.value.context["session_ids"] == [s1.id]
    assert conn.execute("SELECT COUNT(*) FROM shipment_orders").fetchone()[0] == 1


def test_single_consolidation(services, packed_session):
    session = packed_session("Customer A", cartons=2)

    result = services.shipments.create_single(session.id, "Dispatch")

    assert result.shipment.shipment_id.startswith("SO-")
    assert result.shipment.order_type == ShipmentKind.SINGLE
    assert result.shipment.destination == "1 Main Rd, Durban"
    assert result.customer_count == 1

    details = services.shipments.get_details(result.shipment.id)
    assert details.total_cartons == 2
    assert sorted(c.carton_barcode for c in details.cartons) == [
        f"{session.session_token}-BOX1",
        f"{session.session_token}-BOX2",
    ]
    assert list(details.cartons_by_customer) == ["Customer A"]
    assert all(not c.is_loaded for c in details.cartons)


def test_only_sealed_cartons_are_shipped(services, seed):
    order_id = seed.order()
    line_id = seed.line(order_id, "A", picked=4)
    session = services.sessions.create(order_id, [BoxConfiguration(quantity=2)], "Ayanda")
    box = services.cartons.current_open(session.id)
    services.ledger.add_item(box.id, line_id, 2, "Ayanda", session.id)
    services.cartons.seal(box.id, 1.0, "Ayanda")
    services.cartons.open_next(session.id)
    services.sessions.complete(session.id)

    result = services.shipments.create_single(session.id, "Dispatch")
    assert result.total_cartons == 1


def test_incomplete_session_set(services, packed_session):
    done = packed_session()
    open_session = packed_session(complete=False)

    with pytest.raises(IncompleteSessionSet) as exc:
        services.shipments.create_multi([done.id, open_session.id, "ghost"], "Dispatch")
    assert exc.value.context["expected"] == 3
    assert exc.value.context["found"] == 1
    assert services.sessions.get(done.id).shipment_created is False


def test_no_sealed_cartons(services, seed):
    order_id = seed.order()
    session = services.sessions.create(order_id, [BoxConfiguration()], "Ayanda")
    services.sessions.complete(session.id)

    with pytest.raises(NoSealedCartons):
        services.shipments.create_single(session.id, "Dispatch")


def test_multi_input_checks(services, packed_session):
    s1 = packed_session()
    with pytest.raises(InvalidInput):
        services.shipments.create_multi([], "Dispatch")
    with pytest.raises(InvalidInput):
        services.shipments.create_multi([s1.id], "Dispatch")
    with pytest.raises(InvalidInput):
        services.shipments.create_multi([s1.id, s1.id], "Dispatch")
    with pytest.raises(InvalidInput):
        services.shipments.create_single(s1.id, " ")
    with pytest.raises(InvalidInput):
        services.shipments.create_single("", "Dispatch")


def test_concurrent_consolidation_ships_once(services, packed_session):
    session = packed_session(cartons=2)
    outcomes = []

    def _ship():
        try:
            outcomes.append(services.shipments.create_single(session.id, "Dispatch"))
        except AlreadyShipped as e:
            outcomes.append(e)

    threads = [threading.Thread(target=_ship) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    shipped = [o for o in outcomes if not isinstance(o, AlreadyShipped)]
    assert len(shipped) == 1
    assert len(outcomes) == 5
    assert len(services.shipments.list_shipments(ShipmentStatus.DRAFT)) == 1


def test_link_conflict_rolls_back_whole_shipment(services, packed_session, conn):
    # another writer already linked the session but has not flagged it yet
    session = packed_session()
    conn.execute(
        "INSERT INTO shipment_sessions (id, shipment_order_id, session_id, customer_name, order_number, "
        "carton_count, created_at) VALUES ('x', 'other', ?, 'A', '1', 1, '2026-01-01T00:00:00')",
        [session.id],
    )
    conn.commit()

    with pytest.raises(AlreadyShipped):
        services.shipments.create_single(session.id, "Dispatch")

    assert conn.execute("SELECT COUNT(*) FROM shipment_orders").fetchone()[0] == 0
    assert conn.execute("SELECT COUNT(*) FROM shipment_cartons").fetchone()[0] == 0
    assert services.sessions.get(session.id).shipment_created is False


def test_configure(services, packed_session):
    shipment = services.shipments.create_single(packed_session().id, "Dispatch").shipment

    configured = services.shipments.configure(
        shipment.id,
        ShipmentType.TRUCK,
        truck_details=TRUCK,
        special_instructions="Fragile",
    )

    assert configured.status == ShipmentStatus.PENDING_DISPATCH
    assert configured.loading_strategy == LoadingStrategy.NON_LIFO
    assert configured.truck_details == TRUCK
    assert configured.configured_at is not None
    assert configured.destination == "1 Main Rd, Durban"

    again = services.shipments.configure(
        shipment.id,
        ShipmentType.COURIER,
        loading_strategy=LoadingStrategy.LIFO,
        courier_details={"company": "FastWay"},
        destination="Depot 4",
    )
    assert again.shipment_type == ShipmentType.COURIER
    assert again.loading_strategy == LoadingStrategy.LIFO
    assert again.destination == "Depot 4"


def test_configure_checks(services, packed_session, conn):
    shipment = services.shipments.create_single(packed_session().id, "Dispatch").shipment

    with pytest.raises(InvalidInput):
        services.shipments.configure(shipment.id, ShipmentType.TRUCK)
    with pytest.raises(InvalidInput):
        services.shipments.configure(shipment.id, ShipmentType.IN_PERSON, truck_details=TRUCK)
    with pytest.raises(WrongShipmentKind):
        services.shipments.configure(
            shipment.id, ShipmentType.TRUCK, truck_details=TRUCK, expected_kind=ShipmentKind.MULTI
        )
    with pytest.raises(NotFound):
        services.shipments.configure("missing", ShipmentType.TRUCK, truck_details=TRUCK)

    conn.execute("UPDATE shipment_orders SET status = 'dispatched' WHERE id = ?", [shipment.id])
    conn.commit()
    with pytest.raises(PreconditionFailed):
        services.shipments.configure(shipment.id, ShipmentType.TRUCK, truck_details=TRUCK)


def test_details_by_kind(services, packed_session):
    shipment = services.shipments.create_single(packed_session().id, "Dispatch").shipment

    assert services.shipments.get_details(shipment.id, ShipmentKind.SINGLE).shipment.id == shipment.id
    with pytest.raises(NotFound):
        services.shipments.get_details(shipment.id, ShipmentKind.MULTI)


def test_available_sessions(services, packed_session):
    s1 = packed_session("Customer A")
    s2 = packed_session("Customer B")
    packed_session("Customer C", complete=False)

    assert {s.id for s in services.shipments.available_sessions()} == {s1.id, s2.id}

    services.shipments.create_single(s1.id, "Dispatch")
    available = services.shipments.available_sessions()
    assert [s.id for s in available] == [s2.id]
    assert available[0].order_number.startswith("SO")


def test_delete_draft_releases_sessions(services, packed_session, conn):
    s1 = packed_session("Customer A")
    s2 = packed_session("Customer B")
    shipment = services.shipments.create_multi([s1.id, s2.id], "Dispatch").shipment

    released = services.shipments.delete_draft(shipment.id)

    assert sorted(released) == sorted([s1.id, s2.id])
    assert services.sessions.get(s1.id).shipment_created is False
    assert services.sessions.get(s1.id).shipment_order_id is None
    assert conn.execute("SELECT COUNT(*) FROM shipment_cartons").fetchone()[0] == 0
    with pytest.raises(NotFound):
        services.shipments.get_details(shipment.id)

    # released sessions can be consolidated again
    assert services.shipments.create_multi([s1.id, s2.id], "Dispatch").total_cartons == 2


def test_delete_only_drafts(services, packed_session):
    shipment = services.shipments.create_single(packed_session().id, "Dispatch").shipment
    services.shipments.configure(shipment.id, ShipmentType.IN_PERSON, in_person_details={"collector": "M. Naidoo"})

    with pytest.raises(PreconditionFailed):
        services.shipments.delete_draft(shipment.id)
    with pytest.raises(NotFound):
        services.shipments.delete_draft("missing")


def test_list_shipments_cache_cleared_on_mutation(services, packed_session):
    assert services.shipments.list_shipments() == []
    shipment = services.shipments.create_single(packed_session().id, "Dispatch").shipment

    assert [s.id for s in services.shipments.list_shipments()] == [shipment.id]

    services.shipments.configure(shipment.id, ShipmentType.COURIER, courier_details={"company": "FastWay"})
    assert services.shipments.list_shipments(ShipmentStatus.DRAFT) == []
    assert [s.id for s in services.shipments.list_shipments(ShipmentStatus.PENDING_DISPATCH)] == [shipment.id]


def test_cartons_frozen_once_shipped(services, packed_session):
    session = packed_session(cartons=2)
    shipment = services.shipments.create_single(session.id, "Dispatch").shipment
    box1, box2 = services.cartons.list_for_session(session.id)
    entry = services.ledger.carton_items(box1.id)[0]

    with pytest.raises(PreconditionFailed, match="part of a shipment"):
        services.cartons.reopen(box1.id)
    with pytest.raises(PreconditionFailed, match="part of a shipment"):
        services.cartons.seal(box2.id, 1.0, "Thandi")
    with pytest.raises(PreconditionFailed, match="part of a shipment"):
        services.cartons.open_next(session.id)
    with pytest.raises(PreconditionFailed, match="part of a shipment"):
        services.cartons.delete(box2.id)
    with pytest.raises(PreconditionFailed, match="part of a shipment"):
        services.ledger.add_item(box1.id, entry.line_id, 1, "Thandi", session.id)
    with pytest.raises(PreconditionFailed, match="part of a shipment"):
        services.ledger.remove_item(entry.id, box1.id)

    assert [c.status for c in services.cartons.list_for_session(session.id)] == [
        CartonStatus.SEALED,
        CartonStatus.SEALED,
    ]
    assert services.sessions.get(session.id).total_cartons == 2
    assert services.ledger.carton_items(box1.id)[0].quantity == entry.quantity
    assert services.shipments.get_details(shipment.id).total_cartons == 2


def test_cartons_editable_again_after_draft_deleted(services, packed_session):
    session = packed_session()
    shipment = services.shipments.create_single(session.id, "Dispatch").shipment
    box = services.cartons.list_for_session(session.id)[0]

    services.shipments.delete_draft(shipment.id)

    assert services.cartons.reopen(box.id).status == CartonStatus.OPEN
