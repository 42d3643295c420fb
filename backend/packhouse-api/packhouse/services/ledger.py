# packhouse/services/ledger.py

import uuid
from typing import Dict, List, Optional

import structlog

from packhouse.cache import ResultCache
from packhouse.db import Store, Tx, utcnow
from packhouse.errors import (
    BackingStoreError,
    ConstraintViolation,
    FullyPackedInSession,
    InvalidInput,
    ItemNotInOrder,
    NotFound,
    NotYetPicked,
    PreconditionFailed,
    QuantityExceeded,
    WriteConflict,
)
from packhouse.locks import SessionLocks, session_key
from packhouse.models import CartonStatus, LedgerEntry, OrderLine, OrderLineView, ScanValidation
from packhouse.services.cartons import ensure_not_shipped

log = structlog.get_logger(__name__)

LINE_COLUMNS = "id, order_id, sku, item_name, barcode, quantity_picked"

# first try plus one retry after losing a write to another process
ADD_ATTEMPTS = 2

# what a session has packed of one line, across all of its cartons
_PACKED_IN_SESSION = (
    "SELECT COALESCE(SUM(ci.quantity), 0) FROM carton_items ci "
    "JOIN package_cartons c ON c.id = ci.carton_id "
    "WHERE c.session_id = ? AND ci.line_id = ?"
)

# guard shared by both ledger writes: requested <= picked - packed-in-session
_WITHIN_REMAINING = (
    "? <= (SELECT pl.quantity_picked FROM picklist pl WHERE pl.id = ?) - ("
    + _PACKED_IN_SESSION
    + ")"
)


def normalize_barcode(barcode: Optional[str]) -> str:
    return (barcode or "").strip().upper()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ItemLedger:
    def __init__(self, store: Store, cache: ResultCache, locks: SessionLocks):
        self.store = store
        self.cache = cache
        self.locks = locks

    # ---------- quantities ----------

    @staticmethod
    def _packed(tx: Tx, line_id: str, session_id: str) -> int:
        return int(tx.scalar(_PACKED_IN_SESSION, [session_id, line_id], default=0))

    def packed_quantity_in_session(self, line_id: str, session_id: str) -> int:
        with self.store.transaction() as tx:
            return self._packed(tx, line_id, session_id)

    @staticmethod
    def _recount(tx: Tx, carton_id: str) -> int:
        count = int(tx.scalar("SELECT COALESCE(SUM(quantity), 0) FROM carton_items WHERE carton_id = ?", [carton_id], default=0))
        tx.execute("UPDATE package_cartons SET items_count = ? WHERE id = ?", [count, carton_id])
        return count

    # ---------- scan validation ----------

    def _find_line(self, tx: Tx, order_id: str, clean: str) -> dict:
        line = tx.one(
            f"SELECT {LINE_COLUMNS} FROM picklist WHERE order_id = ? AND UPPER(barcode) = ?",
            [order_id, clean],
        )
        if line is not None:
            return line

        # scanner noise: accept a unique partial hit
        matches = tx.rows(
            f"SELECT {LINE_COLUMNS} FROM picklist WHERE order_id = ? AND UPPER(barcode) LIKE ? ESCAPE '\\'",
            [order_id, f"%{_escape_like(clean)}%"],
        )
        if not matches:
            raise ItemNotInOrder(
                f"ITEM NOT IN ORDER. Barcode {clean} is not part of this order.",
                barcode=clean,
                order_id=order_id,
            )
        if len(matches) > 1:
            raise InvalidInput(
                f"Barcode {clean} matches {len(matches)} items in this order; scan again.",
                barcode=clean,
                candidates=[m["sku"] for m in matches],
            )
        return matches[0]

    def validate_scan(self, order_id: str, session_id: str, barcode: str) -> ScanValidation:
        clean = normalize_barcode(barcode)
        if not clean:
            raise InvalidInput("Barcode cannot be empty.")

        with self.store.transaction() as tx:
            session = tx.one("SELECT order_id FROM packaging_sessions WHERE id = ?", [session_id])
            if session is None:
                raise NotFound("Packaging session not found.", session_id=session_id)
            if session["order_id"] != order_id:
                raise InvalidInput("Session belongs to a different order.", session_id=session_id, order_id=order_id)

            line = OrderLine.from_row(self._find_line(tx, order_id, clean))

            if line.quantity_picked <= 0:
                raise NotYetPicked(
                    f"ITEM NOT PICKED YET. {line.item_name} ({line.sku}) has picked quantity "
                    f"{line.quantity_picked}; pick it first.",
                    line_id=line.id,
                    sku=line.sku,
                )

            already = self._packed(tx, line.id, session_id)

        remaining = line.quantity_picked - already
        if remaining <= 0:
            raise FullyPackedInSession(
                f"ALREADY FULLY PACKED IN THIS SESSION. {line.item_name} ({line.sku}): "
                f"picked {line.quantity_picked}, packed {already}.",
                line_id=line.id,
                sku=line.sku,
                quantity_picked=line.quantity_picked,
                already_packed=already,
            )

        log.info("ledger.scan_ok", session_id=session_id, sku=line.sku, picked=line.quantity_picked, packed=already, remaining=remaining)
        return ScanValidation(line=line, remaining=remaining, already_packed=already)

    # ---------- writes ----------

    def add_item(self, carton_id: str, line_id: str, quantity: int, operator: str, session_id: str) -> LedgerEntry:
        """Put ``quantity`` units of a line into a carton.

        Remaining is re-derived here, not trusted from the scan, and both the
        merge UPDATE and the INSERT repeat the bound in their WHERE clause.
        A write that loses to another process (duplicate (carton, line) row or
        a serialization failure) is retried once against the committed state.
        """
        if quantity is None or quantity < 1:
            raise InvalidInput("Quantity must be at least 1.", quantity=quantity)
        if not operator or not operator.strip():
            raise InvalidInput("Operator name cannot be empty.")

        with self.locks.hold(session_key(session_id)):
            for attempt in range(ADD_ATTEMPTS):
                try:
                    with self.store.transaction() as tx:
                        entry, merged, items_count = self._add_in_tx(
                            tx, carton_id, line_id, quantity, operator.strip(), session_id
                        )
                    break
                except (ConstraintViolation, WriteConflict) as e:
                    log.warning("ledger.add_conflict", carton_id=carton_id, line_id=line_id, attempt=attempt + 1)
                    if attempt + 1 == ADD_ATTEMPTS:
                        raise QuantityExceeded(
                            "Another terminal packed this item first; refresh and retry.",
                            requested=quantity,
                            line_id=line_id,
                        ) from e

        self.cache.clear()
        log.info(
            "ledger.item_added",
            carton_id=carton_id,
            sku=entry["sku"],
            quantity=quantity,
            merged=merged,
            items_count=items_count,
        )
        return LedgerEntry.from_row(entry)

    def _add_in_tx(self, tx: Tx, carton_id: str, line_id: str, quantity: int, operator: str, session_id: str):
        carton = tx.one(
            "SELECT id, session_id, box_number, status FROM package_cartons WHERE id = ?",
            [carton_id],
        )
        if carton is None or carton["session_id"] != session_id:
            raise NotFound("Carton not found in this session.", carton_id=carton_id, session_id=session_id)
        ensure_not_shipped(tx, session_id)
        if carton["status"] != CartonStatus.OPEN.value:
            raise PreconditionFailed(
                f"Box {carton['box_number']} is {carton['status']}; items go into the open box.",
                carton_id=carton_id,
                status=carton["status"],
            )

        line = tx.one(
            f"SELECT {LINE_COLUMNS} FROM picklist WHERE id = ? "
            "AND order_id = (SELECT order_id FROM packaging_sessions WHERE id = ?)",
            [line_id, session_id],
        )
        if line is None:
            raise NotFound("Item is not part of this session's order.", line_id=line_id)

        remaining = line["quantity_picked"] - self._packed(tx, line_id, session_id)
        if quantity > remaining:
            raise QuantityExceeded(
                f"Cannot pack {quantity} items. Only {max(remaining, 0)} remaining in this session.",
                requested=quantity,
                remaining=max(remaining, 0),
                line_id=line_id,
            )

        now = utcnow()
        existing = tx.one(
            "SELECT id FROM carton_items WHERE carton_id = ? AND line_id = ?",
            [carton_id, line_id],
        )
        guard = [quantity, line_id, session_id, line_id]
        if existing is not None:
            entry_id = existing["id"]
            written = tx.execute(
                "UPDATE carton_items SET quantity = quantity + ?, added_at = ? "
                f"WHERE id = ? AND {_WITHIN_REMAINING}",
                [quantity, now, entry_id] + guard,
            )
        else:
            entry_id = str(uuid.uuid4())
            written = tx.execute(
                "INSERT INTO carton_items (id, carton_id, line_id, quantity, added_by, added_at) "
                f"SELECT ?, ?, ?, ?, ?, ? WHERE {_WITHIN_REMAINING}",
                [entry_id, carton_id, line_id, quantity, operator, now] + guard,
            )
        if not written:
            raise QuantityExceeded(
                "Another terminal packed this item first; refresh and retry.",
                requested=quantity,
                line_id=line_id,
            )

        items_count = self._recount(tx, carton_id)
        entry = tx.one(
            "SELECT ci.id, ci.carton_id, ci.line_id, ci.quantity, ci.added_by, ci.added_at, pl.sku, pl.item_name "
            "FROM carton_items ci JOIN picklist pl ON pl.id = ci.line_id WHERE ci.id = ?",
            [entry_id],
        )
        return entry, existing is not None, items_count

    def remove_item(self, entry_id: str, carton_id: str) -> int:
        """Delete one ledger entry; returns the carton's new items_count."""
        with self.store.transaction() as tx:
            carton = tx.one("SELECT session_id FROM package_cartons WHERE id = ?", [carton_id])
        if carton is None:
            raise NotFound("Carton not found.", carton_id=carton_id)

        with self.locks.hold(session_key(carton["session_id"])):
            with self.store.transaction() as tx:
                ensure_not_shipped(tx, carton["session_id"])
                if not tx.execute("DELETE FROM carton_items WHERE id = ? AND carton_id = ?", [entry_id, carton_id]):
                    raise NotFound("Item not found in this carton.", entry_id=entry_id, carton_id=carton_id)
                items_count = self._recount(tx, carton_id)

        self.cache.clear()
        log.info("ledger.item_removed", carton_id=carton_id, entry_id=entry_id, items_count=items_count)
        return items_count

    # ---------- reads ----------

    def carton_items(self, carton_id: str) -> List[LedgerEntry]:
        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    "SELECT ci.id, ci.carton_id, ci.line_id, ci.quantity, ci.added_by, ci.added_at, pl.sku, pl.item_name "
                    "FROM carton_items ci LEFT JOIN picklist pl ON pl.id = ci.line_id "
                    "WHERE ci.carton_id = ? ORDER BY ci.added_at",
                    [carton_id],
                )
        except BackingStoreError as e:
            log.warning("ledger.items_failed", carton_id=carton_id, error=e.message)
            return []
        return [LedgerEntry.from_row(r) for r in rows]

    def line_view(
        self,
        order_id: str,
        session_id: Optional[str] = None,
        use_cache: bool = True,
        force_refresh: bool = False,
    ) -> List[OrderLineView]:
        """Order lines with what ``session_id`` has packed of each.

        Without a session every packed quantity is 0: packing is never
        counted across sessions.
        """
        key = (order_id, session_id)
        if force_refresh:
            self.cache.discard(key)
        elif use_cache:
            hit = self.cache.get(key)
            if hit is not None:
                return hit

        try:
            with self.store.transaction() as tx:
                lines = tx.rows(f"SELECT {LINE_COLUMNS} FROM picklist WHERE order_id = ? ORDER BY sku", [order_id])
                packed: Dict[str, int] = {}
                if session_id is not None:
                    for r in tx.rows(
                        "SELECT ci.line_id, SUM(ci.quantity) AS packed FROM carton_items ci "
                        "JOIN package_cartons c ON c.id = ci.carton_id "
                        "WHERE c.session_id = ? GROUP BY ci.line_id",
                        [session_id],
                    ):
                        packed[r["line_id"]] = int(r["packed"] or 0)
        except BackingStoreError as e:
            log.warning("ledger.line_view_failed", order_id=order_id, session_id=session_id, error=e.message)
            return []

        views = [OrderLineView.from_row({**r, "quantity_packed": packed.get(r["id"], 0)}) for r in lines]
        self.cache.put(key, views)
        return views
