# packhouse/services/sessions.py

import time
import uuid
from typing import List, Optional, Sequence

import structlog

from packhouse.cache import ResultCache
from packhouse.db import Store, utcnow
from packhouse.errors import (
    BackingStoreError,
    ConstraintViolation,
    InvalidInput,
    NotDeleted,
    NotFound,
    PreconditionFailed,
    SessionAlreadyActive,
)
from packhouse.locks import SessionLocks, order_key, session_key
from packhouse.models import BoxConfiguration, PackagingSession
from packhouse.services.cartons import CartonStateMachine, expand_boxes

log = structlog.get_logger(__name__)

SESSION_COLUMNS = (
    "id, session_token, order_id, customer_name, packaged_by, status, total_items, total_cartons, "
    "started_at, completed_at, shipment_created, shipment_order_id"
)


def new_session_token() -> str:
    return f"PKG-{int(time.time() * 1000)}-{uuid.uuid4().hex[:4].upper()}"


class SessionController:
    """Owns a session's lifetime: create, complete, delete, and the order-side
    flag that keeps deleted work out of intake."""

    def __init__(
        self,
        store: Store,
        cartons: CartonStateMachine,
        cache: ResultCache,
        locks: SessionLocks,
        shipment_cache: Optional[ResultCache] = None,
    ):
        self.store = store
        self.cartons = cartons
        self.cache = cache
        self.locks = locks
        self.shipment_cache = shipment_cache

    def _invalidate(self) -> None:
        self.cache.clear()
        if self.shipment_cache is not None:
            self.shipment_cache.clear()

    def _active_token(self, order_id: str) -> Optional[str]:
        with self.store.transaction() as tx:
            return tx.scalar(
                "SELECT session_token FROM packaging_sessions WHERE order_id = ? AND status = 'in_progress'",
                [order_id],
            )

    # ---------- create ----------

    def create(self, order_id: str, boxes: Sequence[BoxConfiguration], operator: str) -> PackagingSession:
        if not operator or not operator.strip():
            raise InvalidInput("Operator name cannot be empty.")
        if not boxes:
            raise InvalidInput("At least one box is required.")

        token = new_session_token()
        session_id = str(uuid.uuid4())
        total_cartons = len(expand_boxes(boxes))

        try:
            with self.locks.hold(order_key(order_id)):
                with self.store.transaction() as tx:
                    order = tx.one(
                        "SELECT o.order_id, o.order_number, o.customer_name, "
                        "(SELECT COUNT(*) FROM picklist p WHERE p.order_id = o.order_id) AS total_items "
                        "FROM customer_orders o WHERE o.order_id = ?",
                        [order_id],
                    )
                    if order is None:
                        raise NotFound("Order not found.", order_id=order_id)

                    now = utcnow()
                    inserted = tx.execute(
                        "INSERT INTO packaging_sessions (id, session_token, order_id, customer_name, packaged_by, "
                        "status, total_items, total_cartons, started_at, shipment_created) "
                        "SELECT ?, ?, ?, ?, ?, 'in_progress', ?, ?, ?, 0 "
                        "WHERE NOT EXISTS (SELECT 1 FROM packaging_sessions "
                        "WHERE order_id = ? AND status = 'in_progress')",
                        [
                            session_id,
                            token,
                            order_id,
                            order["customer_name"],
                            operator.strip(),
                            order["total_items"],
                            total_cartons,
                            now,
                            order_id,
                        ],
                    )
                    if not inserted:
                        existing = tx.scalar(
                            "SELECT session_token FROM packaging_sessions WHERE order_id = ? AND status = 'in_progress'",
                            [order_id],
                        )
                        raise SessionAlreadyActive(
                            f"Order {order['order_number']} already has a packaging session in progress.",
                            session_token=existing,
                            order_id=order_id,
                        )

                    self.cartons.create_batch(tx, session_id, token, boxes, now)
                    row = tx.one(f"SELECT {SESSION_COLUMNS} FROM packaging_sessions WHERE id = ?", [session_id])
        except ConstraintViolation:
            # lost the race to another process; the filtered unique index caught it
            existing = self._active_token(order_id)
            if existing is None:
                raise
            raise SessionAlreadyActive(
                "Order already has a packaging session in progress.",
                session_token=existing,
                order_id=order_id,
            )

        self._invalidate()
        log.info("session.created", session_token=token, order_id=order_id, cartons=total_cartons, operator=operator)
        return PackagingSession.from_row(row)

    # ---------- complete / delete / restore ----------

    def complete(self, session_id: str) -> PackagingSession:
        """Mark packing done. Operator attestation: cartons and lines are not checked."""
        with self.locks.hold(session_key(session_id)):
            with self.store.transaction() as tx:
                now = utcnow()
                done = tx.execute(
                    "UPDATE packaging_sessions SET status = 'completed', completed_at = ?, updated_at = ? "
                    "WHERE id = ? AND status = 'in_progress'",
                    [now, now, session_id],
                )
                row = tx.one(f"SELECT {SESSION_COLUMNS} FROM packaging_sessions WHERE id = ?", [session_id])
                if not done:
                    if row is None:
                        raise NotFound("Packaging session not found.", session_id=session_id)
                    raise PreconditionFailed(
                        f"Session {row['session_token']} is already {row['status']}.",
                        session_id=session_id,
                        status=row["status"],
                    )

        self._invalidate()
        log.info("session.completed", session_token=row["session_token"])
        return PackagingSession.from_row(row)

    def delete(self, session_id: str) -> str:
        """Cascade-delete a session and flag its order packaging_deleted.

        Returns the owning order id. The flag is what keeps the order out of
        intake afterwards; only restore_deleted_order clears it.
        """
        with self.locks.hold(session_key(session_id)):
            with self.store.transaction() as tx:
                session = tx.one(
                    "SELECT order_id, status, session_token, shipment_created, shipment_order_id "
                    "FROM packaging_sessions WHERE id = ?",
                    [session_id],
                )
                if session is None:
                    raise NotFound("Packaging session not found.", session_id=session_id)
                if session["shipment_created"]:
                    raise PreconditionFailed(
                        "Session is part of a shipment; delete the draft shipment first.",
                        session_id=session_id,
                        shipment_order_id=session["shipment_order_id"],
                    )

                order_id = session["order_id"]
                tx.execute(
                    "DELETE FROM carton_items WHERE carton_id IN "
                    "(SELECT id FROM package_cartons WHERE session_id = ?)",
                    [session_id],
                )
                tx.execute("DELETE FROM package_cartons WHERE session_id = ?", [session_id])
                tx.execute("DELETE FROM packaging_sessions WHERE id = ?", [session_id])
                tx.execute(
                    "UPDATE customer_orders SET packaging_deleted = 1, updated_at = ? WHERE order_id = ?",
                    [utcnow(), order_id],
                )

        self._invalidate()
        log.info("session.deleted", session_token=session["session_token"], order_id=order_id, status=session["status"])
        return order_id

    def restore_deleted_order(self, order_id: str) -> None:
        with self.store.transaction() as tx:
            order = tx.one(
                "SELECT order_number, packaging_deleted FROM customer_orders WHERE order_id = ?",
                [order_id],
            )
            if order is None:
                raise NotFound("Order not found.", order_id=order_id)
            if not order["packaging_deleted"]:
                raise NotDeleted("Order was not deleted.", order_id=order_id)
            tx.execute(
                "UPDATE customer_orders SET packaging_deleted = 0, updated_at = ? WHERE order_id = ?",
                [utcnow(), order_id],
            )

        self._invalidate()
        log.info("order.restored", order_id=order_id, order_number=order["order_number"])

    def cancel_order(self, order_id: str) -> None:
        """Take an order out of the packaging flow for good (order_status=cancelled)."""
        with self.locks.hold(order_key(order_id)):
            with self.store.transaction() as tx:
                if tx.one("SELECT order_id FROM customer_orders WHERE order_id = ?", [order_id]) is None:
                    raise NotFound("Order not found.", order_id=order_id)
                active = tx.scalar(
                    "SELECT session_token FROM packaging_sessions WHERE order_id = ? AND status = 'in_progress'",
                    [order_id],
                )
                if active is not None:
                    raise SessionAlreadyActive(
                        "Cannot cancel an order with an active packaging session.",
                        session_token=active,
                        order_id=order_id,
                    )
                tx.execute(
                    "UPDATE customer_orders SET order_status = 'cancelled', updated_at = ? WHERE order_id = ?",
                    [utcnow(), order_id],
                )

        self._invalidate()
        log.info("order.cancelled", order_id=order_id)

    # ---------- reads ----------

    def get(self, session_id: str) -> PackagingSession:
        with self.store.transaction() as tx:
            row = tx.one(f"SELECT {SESSION_COLUMNS} FROM packaging_sessions WHERE id = ?", [session_id])
        if row is None:
            raise NotFound("Packaging session not found.", session_id=session_id)
        return PackagingSession.from_row(row)

    def get_by_token(self, session_token: str) -> PackagingSession:
        with self.store.transaction() as tx:
            row = tx.one(f"SELECT {SESSION_COLUMNS} FROM packaging_sessions WHERE session_token = ?", [session_token])
        if row is None:
            raise NotFound("Packaging session not found.", session_token=session_token)
        return PackagingSession.from_row(row)

    def active_sessions(self) -> List[PackagingSession]:
        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    f"SELECT {SESSION_COLUMNS} FROM packaging_sessions "
                    "WHERE status = 'in_progress' ORDER BY started_at DESC"
                )
        except BackingStoreError as e:
            log.warning("session.list_active_failed", error=e.message)
            return []
        return [PackagingSession.from_row(r) for r in rows]

    def completed_sessions(self, limit: int = 50) -> List[PackagingSession]:
        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    f"SELECT {SESSION_COLUMNS} FROM packaging_sessions "
                    "WHERE status = 'completed' ORDER BY completed_at DESC",
                    limit=limit,
                )
        except BackingStoreError as e:
            log.warning("session.list_completed_failed", error=e.message)
            return []
        return [PackagingSession.from_row(r) for r in rows]
