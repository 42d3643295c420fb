# packhouse/routers/shipments.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from packhouse.deps import get_services, require_key
from packhouse.models import LoadingStrategy, ShipmentKind, ShipmentStatus, ShipmentType
from packhouse.services.bundle import ServiceBundle

router = APIRouter(prefix="/shipments", tags=["shipments"])


class SingleShipmentRequest(BaseModel):
    session_id: str
    created_by: str


class MultiShipmentRequest(BaseModel):
    session_ids: List[str]
    created_by: str


class ConfigureRequest(BaseModel):
    shipment_type: ShipmentType
    loading_strategy: Optional[LoadingStrategy] = None
    truck_details: Optional[Dict[str, Any]] = None
    courier_details: Optional[Dict[str, Any]] = None
    in_person_details: Optional[Dict[str, Any]] = None
    destination: Optional[str] = None
    special_instructions: Optional[str] = None
    expected_dispatch_at: Optional[datetime] = None


def _configure(svc: ServiceBundle, shipment_id: str, req: ConfigureRequest, kind: Optional[ShipmentKind]):
    return svc.shipments.configure(
        shipment_id,
        req.shipment_type,
        loading_strategy=req.loading_strategy,
        truck_details=req.truck_details,
        courier_details=req.courier_details,
        in_person_details=req.in_person_details,
        destination=req.destination,
        special_instructions=req.special_instructions,
        expected_dispatch_at=req.expected_dispatch_at,
        expected_kind=kind,
    )


# 1) Listings
@router.get("")
def list_shipments(
    status: ShipmentStatus = Query(ShipmentStatus.DRAFT),
    force_refresh: bool = Query(False),
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.list_shipments(status, force_refresh=force_refresh)


@router.get("/available-sessions")
def available_sessions(
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.available_sessions()


# 2) Consolidate sealed cartons into a draft shipment
@router.post("/single")
def create_single(
    req: SingleShipmentRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.create_single(req.session_id, req.created_by)


@router.post("/multi")
def create_multi(
    req: MultiShipmentRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.create_multi(req.session_ids, req.created_by)


# 3) Delivery details -> pending_dispatch
@router.post("/single/{shipment_id}/configure")
def configure_single(
    shipment_id: str,
    req: ConfigureRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return _configure(svc, shipment_id, req, ShipmentKind.SINGLE)


@router.post("/multi/{shipment_id}/configure")
def configure_multi(
    shipment_id: str,
    req: ConfigureRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return _configure(svc, shipment_id, req, ShipmentKind.MULTI)


@router.post("/{shipment_id}/configure")
def configure(
    shipment_id: str,
    req: ConfigureRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return _configure(svc, shipment_id, req, None)


# 4) Details
@router.get("/single/{shipment_id}")
def single_details(
    shipment_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.get_details(shipment_id, ShipmentKind.SINGLE)


@router.get("/multi/{shipment_id}")
def multi_details(
    shipment_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.get_details(shipment_id, ShipmentKind.MULTI)


@router.get("/{shipment_id}")
def details(
    shipment_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.shipments.get_details(shipment_id)


# 5) Drop a draft and release its sessions
@router.delete("/{shipment_id}")
def delete_draft(
    shipment_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    released = svc.shipments.delete_draft(shipment_id)
    return {"ok": True, "released_sessions": released}
