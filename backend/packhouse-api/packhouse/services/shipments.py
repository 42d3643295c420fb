# packhouse/services/shipments.py
#
# Consolidation of sealed cartons from completed packaging sessions into a
# shipment record. Single (SO) and multi-customer (MSO) shipments share one
# code path; the only differences are cardinality, id prefix and destination.

import json
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from packhouse.cache import ResultCache
from packhouse.db import Store, Tx, utcnow
from packhouse.errors import (
    AlreadyShipped,
    BackingStoreError,
    ConstraintViolation,
    IncompleteSessionSet,
    InvalidInput,
    NoSealedCartons,
    NotFound,
    PreconditionFailed,
    WrongShipmentKind,
)
from packhouse.locks import SessionLocks, session_key
from packhouse.models import (
    AvailableSession,
    ConsolidationResult,
    LoadingStrategy,
    ShipmentCarton,
    ShipmentDetails,
    ShipmentKind,
    ShipmentRecord,
    ShipmentSessionLink,
    ShipmentStatus,
    ShipmentType,
)

log = structlog.get_logger(__name__)

MULTI_DESTINATION = "Multiple Destinations"
CONFIGURABLE = (ShipmentStatus.DRAFT.value, ShipmentStatus.PENDING_DISPATCH.value)

SHIPMENT_COLUMNS = (
    "id, shipment_id, order_type, status, destination, total_cartons, created_by, shipment_type, "
    "loading_strategy, truck_details, courier_details, in_person_details, special_instructions, "
    "expected_dispatch_at, created_at, configured_at"
)
LINK_COLUMNS = "id, shipment_order_id, session_id, customer_name, order_number, carton_count"
SHIPMENT_CARTON_COLUMNS = "id, shipment_order_id, carton_barcode, customer_name, is_loaded"


def new_shipment_id(kind: ShipmentKind) -> str:
    prefix = "MSO" if kind is ShipmentKind.MULTI else "SO"
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def _dump(details: Optional[Dict[str, Any]]) -> Optional[str]:
    return json.dumps(details) if details is not None else None


class ShipmentConsolidator:
    def __init__(
        self,
        store: Store,
        cache: ResultCache,
        locks: SessionLocks,
        packaging_cache: Optional[ResultCache] = None,
    ):
        self.store = store
        self.cache = cache
        self.locks = locks
        self.packaging_cache = packaging_cache

    def _invalidate(self) -> None:
        self.cache.clear()
        if self.packaging_cache is not None:
            self.packaging_cache.clear()

    # ---------- create ----------

    def create_single(self, session_id: str, created_by: str) -> ConsolidationResult:
        if not session_id or not session_id.strip():
            raise InvalidInput("Packaging session ID cannot be empty.")
        return self._consolidate([session_id], created_by, ShipmentKind.SINGLE)

    def create_multi(self, session_ids: Sequence[str], created_by: str) -> ConsolidationResult:
        ids = list(session_ids or [])
        if not ids:
            raise InvalidInput("At least one packaging session is required.")
        if len(set(ids)) != len(ids):
            raise InvalidInput("The same packaging session is listed more than once.", session_ids=ids)
        if len(ids) < 2:
            raise InvalidInput(
                "Multi-customer shipment requires at least 2 packaging sessions. "
                "Use the single shipment entry point for one customer."
            )
        return self._consolidate(ids, created_by, ShipmentKind.MULTI)

    def _consolidate(self, session_ids: List[str], created_by: str, kind: ShipmentKind) -> ConsolidationResult:
        """Steps: validate the set, count sealed cartons, create the draft
        shipment, link sessions, copy carton barcodes, mark sessions shipped.

        One transaction. The final conditional UPDATE is the exactly-once
        guard: if another request consolidated any session first, it raises
        and the whole shipment rolls back.
        """
        if not created_by or not created_by.strip():
            raise InvalidInput("User name cannot be empty.")

        try:
            with self.locks.hold_many(session_key(s) for s in session_ids):
                with self.store.transaction() as tx:
                    result = self._consolidate_in(tx, session_ids, created_by.strip(), kind)
        except ConstraintViolation as e:
            # a concurrent consolidation linked one of these sessions first
            raise AlreadyShipped(
                "One or more packaging sessions already have a shipment order.",
                session_ids=session_ids,
            ) from e

        self._invalidate()
        log.info(
            "shipment.created",
            shipment_id=result.shipment.shipment_id,
            order_type=kind.value,
            customers=result.customer_count,
            total_cartons=result.total_cartons,
            sessions=session_ids,
        )
        return result

    def _consolidate_in(self, tx: Tx, session_ids: List[str], created_by: str, kind: ShipmentKind) -> ConsolidationResult:
        placeholders = ",".join(["?"] * len(session_ids))
        found = tx.rows(
            "SELECT s.id, s.session_token, s.shipment_created, s.shipment_order_id, "
            "o.customer_name, o.order_number, o.ship_to_address "
            "FROM packaging_sessions s JOIN customer_orders o ON o.order_id = s.order_id "
            f"WHERE s.id IN ({placeholders}) AND s.status = 'completed'",
            session_ids,
        )
        if len(found) != len(session_ids):
            found_ids = {s["id"] for s in found}
            raise IncompleteSessionSet(
                "Some packaging sessions not found or not completed. "
                f"Expected {len(session_ids)}, found {len(found)}.",
                expected=len(session_ids),
                found=len(found),
                missing=[s for s in session_ids if s not in found_ids],
            )

        shipped = [s for s in found if s["shipment_created"]]
        if shipped:
            raise AlreadyShipped(
                "Packaging sessions already have a shipment order: "
                + ", ".join(f"{s['order_number']} ({s['session_token']})" for s in shipped),
                session_ids=[s["id"] for s in shipped],
                shipment_order_ids=sorted({s["shipment_order_id"] for s in shipped if s["shipment_order_id"]}),
            )

        by_id = {s["id"]: s for s in found}
        sessions = [by_id[sid] for sid in session_ids]

        sealed: Dict[str, List[str]] = {}
        for s in sessions:
            sealed[s["id"]] = [
                r["carton_barcode"]
                for r in tx.rows(
                    "SELECT carton_barcode FROM package_cartons "
                    "WHERE session_id = ? AND status = 'sealed' ORDER BY box_number",
                    [s["id"]],
                )
            ]
        total_cartons = sum(len(v) for v in sealed.values())
        if total_cartons == 0:
            raise NoSealedCartons("No sealed cartons found in any packaging session.", session_ids=session_ids)

        now = utcnow()
        shipment_order_id = str(uuid.uuid4())
        destination = MULTI_DESTINATION if kind is ShipmentKind.MULTI else (sessions[0]["ship_to_address"] or "")
        tx.insert(
            "shipment_orders",
            {
                "id": shipment_order_id,
                "shipment_id": new_shipment_id(kind),
                "order_type": kind.value,
                "status": ShipmentStatus.DRAFT.value,
                "destination": destination,
                "total_cartons": total_cartons,
                "created_by": created_by,
                "created_at": now,
            },
        )

        for s in sessions:
            tx.insert(
                "shipment_sessions",
                {
                    "id": str(uuid.uuid4()),
                    "shipment_order_id": shipment_order_id,
                    "session_id": s["id"],
                    "customer_name": s["customer_name"] or "Unknown Customer",
                    "order_number": s["order_number"] or "",
                    "carton_count": len(sealed[s["id"]]),
                    "created_at": now,
                },
            )

        for s in sessions:
            for barcode in sealed[s["id"]]:
                tx.insert(
                    "shipment_cartons",
                    {
                        "id": str(uuid.uuid4()),
                        "shipment_order_id": shipment_order_id,
                        "carton_barcode": barcode,
                        "customer_name": s["customer_name"] or "Unknown Customer",
                        "is_loaded": False,
                        "created_at": now,
                    },
                )

        for s in sessions:
            claimed = tx.execute(
                "UPDATE packaging_sessions SET shipment_created = 1, shipment_order_id = ?, updated_at = ? "
                "WHERE id = ? AND shipment_created = 0",
                [shipment_order_id, now, s["id"]],
            )
            if not claimed:
                raise AlreadyShipped(
                    f"Session {s['session_token']} was added to another shipment meanwhile.",
                    session_ids=[s["id"]],
                )

        shipment = ShipmentRecord.from_row(
            tx.one(f"SELECT {SHIPMENT_COLUMNS} FROM shipment_orders WHERE id = ?", [shipment_order_id])
        )
        links = self._links(tx, shipment_order_id)
        # keep the caller's session order
        links.sort(key=lambda link: session_ids.index(link.session_id))
        return ConsolidationResult(
            shipment=shipment,
            sessions=links,
            customer_count=len(sessions),
            total_cartons=total_cartons,
        )

    # ---------- configure ----------

    def configure(
        self,
        shipment_order_id: str,
        shipment_type: ShipmentType,
        loading_strategy: Optional[LoadingStrategy] = None,
        truck_details: Optional[Dict[str, Any]] = None,
        courier_details: Optional[Dict[str, Any]] = None,
        in_person_details: Optional[Dict[str, Any]] = None,
        destination: Optional[str] = None,
        special_instructions: Optional[str] = None,
        expected_dispatch_at: Optional[datetime] = None,
        expected_kind: Optional[ShipmentKind] = None,
    ) -> ShipmentRecord:
        """Attach delivery details and move the shipment to pending_dispatch.

        ``expected_kind`` is set by the single/multi entry points; the generic
        one accepts either kind.
        """
        if not shipment_order_id or not shipment_order_id.strip():
            raise InvalidInput("Shipment order ID cannot be empty.")
        shipment_type = ShipmentType(shipment_type)
        if shipment_type is ShipmentType.TRUCK and not truck_details:
            raise InvalidInput("Truck details are required for truck shipments.")
        if shipment_type is ShipmentType.COURIER and not courier_details:
            raise InvalidInput("Courier details are required for courier shipments.")
        if shipment_type is ShipmentType.IN_PERSON and not in_person_details:
            raise InvalidInput("In-person details are required for in-person pickups.")
        strategy = LoadingStrategy(loading_strategy) if loading_strategy else LoadingStrategy.NON_LIFO

        with self.store.transaction() as tx:
            current = tx.one(
                "SELECT shipment_id, order_type, status FROM shipment_orders WHERE id = ?",
                [shipment_order_id],
            )
            if current is None:
                raise NotFound("Shipment not found. It may have been deleted.", shipment_order_id=shipment_order_id)
            if expected_kind is not None and current["order_type"] != ShipmentKind(expected_kind).value:
                raise WrongShipmentKind(
                    f"This is not a {ShipmentKind(expected_kind).value} shipment; it is {current['order_type']}.",
                    shipment_order_id=shipment_order_id,
                    order_type=current["order_type"],
                )
            if current["status"] not in CONFIGURABLE:
                raise PreconditionFailed(
                    f"Only draft or pending shipments can be configured. Current status: {current['status']}",
                    shipment_order_id=shipment_order_id,
                    status=current["status"],
                )

            now = utcnow()
            updated = tx.execute(
                "UPDATE shipment_orders SET status = 'pending_dispatch', shipment_type = ?, loading_strategy = ?, "
                "truck_details = ?, courier_details = ?, in_person_details = ?, "
                "destination = COALESCE(?, destination), special_instructions = ?, expected_dispatch_at = ?, "
                "configured_at = ?, updated_at = ? "
                "WHERE id = ? AND status IN ('draft', 'pending_dispatch')",
                [
                    shipment_type.value,
                    strategy.value,
                    _dump(truck_details),
                    _dump(courier_details),
                    _dump(in_person_details),
                    destination,
                    special_instructions,
                    expected_dispatch_at,
                    now,
                    now,
                    shipment_order_id,
                ],
            )
            if not updated:
                raise PreconditionFailed("Shipment changed while configuring; refresh and retry.", shipment_order_id=shipment_order_id)
            row = tx.one(f"SELECT {SHIPMENT_COLUMNS} FROM shipment_orders WHERE id = ?", [shipment_order_id])

        self._invalidate()
        log.info(
            "shipment.configured",
            shipment_id=current["shipment_id"],
            shipment_type=shipment_type.value,
            loading_strategy=strategy.value,
        )
        return ShipmentRecord.from_row(row)

    # ---------- delete ----------

    def delete_draft(self, shipment_order_id: str) -> List[str]:
        """Remove a draft shipment and release its sessions for re-consolidation.

        Returns the ids of the sessions that were released.
        """
        with self.store.transaction() as tx:
            current = tx.one("SELECT shipment_id, status FROM shipment_orders WHERE id = ?", [shipment_order_id])
            if current is None:
                raise NotFound("Shipment not found. It may have already been deleted.", shipment_order_id=shipment_order_id)
            if current["status"] != ShipmentStatus.DRAFT.value:
                raise PreconditionFailed(
                    f"Only draft shipments can be deleted. Current status: {current['status']}",
                    shipment_order_id=shipment_order_id,
                    status=current["status"],
                )

            session_ids = [
                r["session_id"]
                for r in tx.rows("SELECT session_id FROM shipment_sessions WHERE shipment_order_id = ?", [shipment_order_id])
            ]
            tx.execute("DELETE FROM shipment_cartons WHERE shipment_order_id = ?", [shipment_order_id])
            tx.execute("DELETE FROM shipment_sessions WHERE shipment_order_id = ?", [shipment_order_id])
            now = utcnow()
            for sid in session_ids:
                tx.execute(
                    "UPDATE packaging_sessions SET shipment_created = 0, shipment_order_id = NULL, updated_at = ? "
                    "WHERE id = ? AND shipment_order_id = ?",
                    [now, sid, shipment_order_id],
                )
            tx.execute("DELETE FROM shipment_orders WHERE id = ?", [shipment_order_id])

        self._invalidate()
        log.info("shipment.deleted", shipment_id=current["shipment_id"], sessions_reset=len(session_ids))
        return session_ids

    # ---------- reads ----------

    @staticmethod
    def _links(tx: Tx, shipment_order_id: str) -> List[ShipmentSessionLink]:
        return [
            ShipmentSessionLink.from_row(r)
            for r in tx.rows(
                f"SELECT {LINK_COLUMNS} FROM shipment_sessions WHERE shipment_order_id = ? ORDER BY created_at",
                [shipment_order_id],
            )
        ]

    def get_details(self, shipment_order_id: str, kind: Optional[ShipmentKind] = None) -> ShipmentDetails:
        with self.store.transaction() as tx:
            row = tx.one(f"SELECT {SHIPMENT_COLUMNS} FROM shipment_orders WHERE id = ?", [shipment_order_id])
            if row is None or (kind is not None and row["order_type"] != ShipmentKind(kind).value):
                label = f"{ShipmentKind(kind).value} shipment" if kind is not None else "Shipment"
                raise NotFound(f"{label.capitalize()} not found.", shipment_order_id=shipment_order_id)
            links = self._links(tx, shipment_order_id)
            cartons = [
                ShipmentCarton.from_row(r)
                for r in tx.rows(
                    f"SELECT {SHIPMENT_CARTON_COLUMNS} FROM shipment_cartons "
                    "WHERE shipment_order_id = ? ORDER BY customer_name, carton_barcode",
                    [shipment_order_id],
                )
            ]

        by_customer: Dict[str, List[ShipmentCarton]] = {}
        for c in cartons:
            by_customer.setdefault(c.customer_name, []).append(c)

        return ShipmentDetails(
            shipment=ShipmentRecord.from_row(row),
            sessions=links,
            cartons=cartons,
            cartons_by_customer=by_customer,
            customer_count=len(links),
            total_cartons=len(cartons),
        )

    def available_sessions(self) -> List[AvailableSession]:
        """Completed sessions not yet consolidated into any shipment."""
        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    "SELECT s.id, s.session_token, s.order_id, s.customer_name, s.packaged_by, s.status, "
                    "s.total_items, s.total_cartons, s.started_at, s.completed_at, s.shipment_created, "
                    "s.shipment_order_id, o.order_number, o.ship_to_address "
                    "FROM packaging_sessions s JOIN customer_orders o ON o.order_id = s.order_id "
                    "WHERE s.status = 'completed' AND s.shipment_created = 0 "
                    "ORDER BY s.completed_at DESC"
                )
        except BackingStoreError as e:
            log.warning("shipment.available_failed", error=e.message)
            return []
        return [AvailableSession.from_row(r) for r in rows]

    def list_shipments(self, status: ShipmentStatus = ShipmentStatus.DRAFT, force_refresh: bool = False) -> List[ShipmentRecord]:
        status = ShipmentStatus(status)
        key = ("status", status.value)
        if not force_refresh:
            hit = self.cache.get(key)
            if hit is not None:
                return hit

        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    f"SELECT {SHIPMENT_COLUMNS} FROM shipment_orders WHERE status = ? ORDER BY created_at DESC",
                    [status.value],
                )
        except BackingStoreError as e:
            log.warning("shipment.list_failed", status=status.value, error=e.message)
            return []

        shipments = [ShipmentRecord.from_row(r) for r in rows]
        self.cache.put(key, shipments)
        return shipments
