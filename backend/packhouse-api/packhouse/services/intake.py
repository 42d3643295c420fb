# packhouse/services/intake.py

from typing import Iterable, List, Set

import structlog

from packhouse.db import Store
from packhouse.errors import BackingStoreError
from packhouse.models import CompletedOrder

log = structlog.get_logger(__name__)


def exclude_ineligible(orders: Iterable[CompletedOrder], live_order_ids: Set[str]) -> List[CompletedOrder]:
    """Drop orders that are soft-deleted from packaging or already have a
    session (in progress or completed).

    Both checks are needed: deleting a session removes it from
    ``live_order_ids``, and only the delete flag then keeps the order out.
    """
    return [o for o in orders if not o.packaging_deleted and o.order_id not in live_order_ids]


class IntakeFilter:
    def __init__(self, store: Store):
        self.store = store

    def ready_orders(self) -> List[CompletedOrder]:
        """Completed orders waiting for packaging, newest first."""
        try:
            with self.store.transaction() as tx:
                rows = tx.rows(
                    "SELECT o.order_id, o.order_number, o.customer_name, o.customer_email, o.customer_phone, "
                    "o.ship_to_address, o.bill_to_address, o.completed_at, o.packaging_deleted, "
                    "(SELECT COUNT(*) FROM picklist p WHERE p.order_id = o.order_id) AS total_items "
                    "FROM customer_orders o "
                    "WHERE o.order_status = 'completed' AND o.packaging_deleted = 0 "
                    "AND EXISTS (SELECT 1 FROM picklist p WHERE p.order_id = o.order_id) "
                    "ORDER BY o.completed_at DESC"
                )
                live = {
                    r["order_id"]
                    for r in tx.rows(
                        "SELECT DISTINCT order_id FROM packaging_sessions WHERE status IN ('in_progress', 'completed')"
                    )
                }
        except BackingStoreError as e:
            log.warning("intake.list_failed", error=e.message)
            return []

        orders = exclude_ineligible((CompletedOrder.from_row(r) for r in rows), live)
        log.info("intake.ready", ready=len(orders), excluded_with_sessions=len(live))
        return orders
