# packhouse/routers/intake.py
from fastapi import APIRouter, Depends

from packhouse.deps import get_services, require_key
from packhouse.services.bundle import ServiceBundle

router = APIRouter(prefix="/intake", tags=["intake"])


# 1) Completed orders waiting for packaging
@router.get("/orders")
def ready_orders(
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    orders = svc.intake.ready_orders()
    return {"items": orders, "count": len(orders)}


# 2) Bring a deleted order back into the queue
@router.post("/orders/{order_id}/restore")
def restore_order(
    order_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    svc.sessions.restore_deleted_order(order_id)
    return {"ok": True, "order_id": order_id}


# 3) Cancel an order outright (refused while a session is in progress)
@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    svc.sessions.cancel_order(order_id)
    return {"ok": True, "order_id": order_id}
