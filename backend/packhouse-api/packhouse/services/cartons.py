# packhouse/services/cartons.py
#
# Carton lifecycle: pending -> open -> sealed, with reopen jumping back.
# Within one session at most one carton is open; every transition below keeps
# that true with a conditional UPDATE under the per-session lock.

import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import structlog

from packhouse.cache import ResultCache
from packhouse.db import Store, Tx, utcnow
from packhouse.errors import BackingStoreError, InvalidInput, NotFound, PreconditionFailed
from packhouse.locks import SessionLocks, session_key
from packhouse.models import BoxConfiguration, Carton, CartonStatus

log = structlog.get_logger(__name__)

# spacing between consecutive cartons' created_at
BOX_TIME_STEP = timedelta(milliseconds=100)

CARTON_COLUMNS = (
    "id, carton_barcode, session_id, box_number, box_type, estimated_weight, actual_weight, "
    "status, items_count, created_at, sealed_at, sealed_by"
)


def carton_barcode(session_token: str, box_number: int) -> str:
    return f"{session_token}-BOX{box_number}"


def ensure_not_shipped(tx: Tx, session_id: str) -> None:
    """Cartons of a consolidated session are frozen: the shipment copied them."""
    row = tx.one(
        "SELECT shipment_order_id FROM packaging_sessions WHERE id = ? AND shipment_created = 1",
        [session_id],
    )
    if row is not None:
        raise PreconditionFailed(
            "Session is part of a shipment; its cartons can no longer change.",
            session_id=session_id,
            shipment_order_id=row["shipment_order_id"],
        )


def expand_boxes(boxes: Sequence[BoxConfiguration]) -> List[BoxConfiguration]:
    """One entry per physical box (a config with quantity=3 is three boxes)."""
    out: List[BoxConfiguration] = []
    for box in boxes:
        out.extend(
            BoxConfiguration(box_type=box.box_type, quantity=1, estimated_weight=box.estimated_weight)
            for _ in range(box.quantity)
        )
    return out


class CartonStateMachine:
    def __init__(self, store: Store, cache: ResultCache, locks: SessionLocks):
        self.store = store
        self.cache = cache
        self.locks = locks

    # ---------- helpers ----------

    @staticmethod
    def _select(tx: Tx, carton_id: str) -> Optional[dict]:
        return tx.one(f"SELECT {CARTON_COLUMNS} FROM package_cartons WHERE id = ?", [carton_id])

    def get(self, carton_id: str) -> Carton:
        with self.store.transaction() as tx:
            row = self._select(tx, carton_id)
        if row is None:
            raise NotFound("Carton not found.", carton_id=carton_id)
        return Carton.from_row(row)

    # ---------- batch creation ----------

    def create_batch(
        self,
        tx: Tx,
        session_id: str,
        session_token: str,
        boxes: Sequence[BoxConfiguration],
        base_time: datetime,
    ) -> List[Carton]:
        """Insert the session's boxes: #1 open, the rest pending.

        Runs inside the caller's transaction. created_at strictly increases
        with box_number so ordering by time and by number agree.
        """
        cartons: List[Carton] = []
        for i, box in enumerate(expand_boxes(boxes)):
            box_number = i + 1
            row = {
                "id": str(uuid.uuid4()),
                "carton_barcode": carton_barcode(session_token, box_number),
                "session_id": session_id,
                "box_number": box_number,
                "box_type": box.box_type,
                "estimated_weight": box.estimated_weight,
                "actual_weight": None,
                "status": (CartonStatus.OPEN if i == 0 else CartonStatus.PENDING).value,
                "items_count": 0,
                "created_at": base_time + i * BOX_TIME_STEP,
                "sealed_at": None,
                "sealed_by": None,
            }
            tx.insert("package_cartons", row)
            cartons.append(Carton.from_row(row))
            log.debug("carton.created", session_id=session_id, box_number=box_number, status=row["status"])
        return cartons

    # ---------- reads ----------

    def list_for_session(self, session_id: str) -> List[Carton]:
        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    f"SELECT {CARTON_COLUMNS} FROM package_cartons WHERE session_id = ? ORDER BY box_number",
                    [session_id],
                )
        except BackingStoreError as e:
            log.warning("carton.list_failed", session_id=session_id, error=e.message)
            return []
        return [Carton.from_row(r) for r in rows]

    def current_open(self, session_id: str) -> Optional[Carton]:
        try:
            with self.store.transaction() as tx:
                row = tx.one(
                    f"SELECT {CARTON_COLUMNS} FROM package_cartons "
                    "WHERE session_id = ? AND status = 'open' ORDER BY box_number",
                    [session_id],
                )
        except BackingStoreError as e:
            log.warning("carton.current_failed", session_id=session_id, error=e.message)
            return None
        return Carton.from_row(row) if row else None

    # ---------- transitions ----------

    def seal(self, carton_id: str, weight: float, operator: str) -> Carton:
        if weight is None or weight < 0:
            raise InvalidInput("Weight must be zero or more.", weight=weight)
        if not operator or not operator.strip():
            raise InvalidInput("Operator name cannot be empty.")

        carton = self.get(carton_id)
        with self.locks.hold(session_key(carton.session_id)):
            with self.store.transaction() as tx:
                ensure_not_shipped(tx, carton.session_id)
                sealed = tx.execute(
                    "UPDATE package_cartons "
                    "SET status = 'sealed', actual_weight = ?, sealed_at = ?, sealed_by = ? "
                    "WHERE id = ? AND status = 'open' AND items_count > 0",
                    [weight, utcnow(), operator.strip(), carton_id],
                )
                row = self._select(tx, carton_id)
                if not sealed:
                    if row is None:
                        raise NotFound("Carton not found.", carton_id=carton_id)
                    if row["status"] != CartonStatus.OPEN.value:
                        raise PreconditionFailed(
                            f"Box {row['box_number']} is {row['status']}; only the open box can be sealed.",
                            carton_id=carton_id,
                            status=row["status"],
                        )
                    raise PreconditionFailed(
                        "Cannot seal empty box. Please add items first.",
                        carton_id=carton_id,
                    )

        self.cache.clear()
        log.info("carton.sealed", carton_id=carton_id, items=row["items_count"], weight=weight, operator=operator)
        return Carton.from_row(row)

    def open_next(self, session_id: str) -> Optional[Carton]:
        """Open the lowest-numbered pending box; None when none are left.

        Never seals the current box: if one is still open and a pending box
        remains, this fails.
        """
        with self.locks.hold(session_key(session_id)):
            with self.store.transaction() as tx:
                if tx.one("SELECT id FROM packaging_sessions WHERE id = ?", [session_id]) is None:
                    raise NotFound("Packaging session not found.", session_id=session_id)
                ensure_not_shipped(tx, session_id)

                nxt = tx.one(
                    f"SELECT {CARTON_COLUMNS} FROM package_cartons "
                    "WHERE session_id = ? AND status = 'pending' ORDER BY box_number",
                    [session_id],
                )
                if nxt is None:
                    log.info("carton.no_more_boxes", session_id=session_id)
                    return None

                current = tx.one(
                    "SELECT id, box_number FROM package_cartons "
                    "WHERE session_id = ? AND status = 'open' ORDER BY box_number",
                    [session_id],
                )
                if current is not None:
                    raise PreconditionFailed(
                        f"Box {current['box_number']} is still open; seal it before opening the next one.",
                        carton_id=current["id"],
                    )

                opened = tx.execute(
                    "UPDATE package_cartons SET status = 'open' "
                    "WHERE id = ? AND status = 'pending' AND NOT EXISTS "
                    "(SELECT 1 FROM package_cartons o WHERE o.session_id = ? AND o.status = 'open')",
                    [nxt["id"], session_id],
                )
                if not opened:
                    raise PreconditionFailed(
                        "The session's boxes changed while opening the next one; refresh and retry.",
                        session_id=session_id,
                    )

        self.cache.clear()
        log.info("carton.opened", session_id=session_id, box_number=nxt["box_number"])
        return Carton.from_row({**nxt, "status": CartonStatus.OPEN.value})

    def reopen(self, carton_id: str) -> Carton:
        """Make ``carton_id`` the open box, closing whichever box was open."""
        carton = self.get(carton_id)
        with self.locks.hold(session_key(carton.session_id)):
            with self.store.transaction() as tx:
                if self._select(tx, carton_id) is None:
                    raise NotFound("Carton not found.", carton_id=carton_id)
                ensure_not_shipped(tx, carton.session_id)
                closed = tx.execute(
                    "UPDATE package_cartons SET status = 'sealed' "
                    "WHERE session_id = ? AND status = 'open' AND id <> ?",
                    [carton.session_id, carton_id],
                )
                tx.execute(
                    "UPDATE package_cartons SET status = 'open', sealed_at = NULL, sealed_by = NULL WHERE id = ?",
                    [carton_id],
                )
                row = self._select(tx, carton_id)

        self.cache.clear()
        log.info("carton.reopened", carton_id=carton_id, box_number=row["box_number"], closed_others=closed)
        return Carton.from_row(row)

    def delete(self, carton_id: str) -> int:
        """Drop a carton with its ledger entries; returns the session's new carton count."""
        carton = self.get(carton_id)
        with self.locks.hold(session_key(carton.session_id)):
            with self.store.transaction() as tx:
                ensure_not_shipped(tx, carton.session_id)
                tx.execute("DELETE FROM carton_items WHERE carton_id = ?", [carton_id])
                if not tx.execute("DELETE FROM package_cartons WHERE id = ?", [carton_id]):
                    raise NotFound("Carton not found.", carton_id=carton_id)
                remaining = tx.scalar(
                    "SELECT COUNT(*) FROM package_cartons WHERE session_id = ?",
                    [carton.session_id],
                    default=0,
                )
                tx.execute(
                    "UPDATE packaging_sessions SET total_cartons = ?, updated_at = ? WHERE id = ?",
                    [remaining, utcnow(), carton.session_id],
                )

        self.cache.clear()
        log.info("carton.deleted", carton_id=carton_id, session_id=carton.session_id, remaining=remaining)
        return int(remaining)
