# packhouse/routers/cartons.py
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from packhouse.deps import get_services, require_key
from packhouse.services.bundle import ServiceBundle

router = APIRouter(prefix="/cartons", tags=["cartons"])


class SealRequest(BaseModel):
    weight: float
    operator: str


class AddItemRequest(BaseModel):
    session_id: str
    line_id: str
    operator: str
    quantity: int = 1


# 1) Seal the open box
@router.post("/{carton_id}/seal")
def seal(
    carton_id: str,
    req: SealRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.cartons.seal(carton_id, req.weight, req.operator)


# 2) Reopen a box (whichever box was open gets closed)
@router.post("/{carton_id}/reopen")
def reopen(
    carton_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.cartons.reopen(carton_id)


@router.delete("/{carton_id}")
def delete_carton(
    carton_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    remaining = svc.cartons.delete(carton_id)
    return {"ok": True, "remaining_cartons": remaining}


# 3) Ledger entries of a box
@router.get("/{carton_id}/items")
def carton_items(
    carton_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.ledger.carton_items(carton_id)


@router.post("/{carton_id}/items")
def add_item(
    carton_id: str,
    req: AddItemRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.ledger.add_item(carton_id, req.line_id, req.quantity, req.operator, req.session_id)


@router.delete("/{carton_id}/items/{entry_id}")
def remove_item(
    carton_id: str,
    entry_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    items_count = svc.ledger.remove_item(entry_id, carton_id)
    return {"ok": True, "items_count": items_count}
