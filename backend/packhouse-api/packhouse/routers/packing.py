# packhouse/routers/packing.py
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from packhouse.deps import get_services, require_key
from packhouse.models import BoxConfiguration
from packhouse.services.bundle import ServiceBundle

router = APIRouter(prefix="/packing", tags=["packing"])


class CreateSessionRequest(BaseModel):
    order_id: str
    operator: str
    boxes: List[BoxConfiguration] = Field(default_factory=lambda: [BoxConfiguration()])


class ValidateScanRequest(BaseModel):
    order_id: str
    barcode: str


# 1) Start packing an order
@router.post("/sessions")
def create_session(
    req: CreateSessionRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    session = svc.sessions.create(req.order_id, req.boxes, req.operator)
    return {
        "ok": True,
        "session": session,
        "cartons": svc.cartons.list_for_session(session.id),
    }


# 2) Listings (declared before /sessions/{session_id} so the path param doesn't swallow them)
@router.get("/sessions/active")
def active_sessions(
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.sessions.active_sessions()


@router.get("/sessions/completed")
def completed_sessions(
    limit: int = Query(50, ge=1, le=500),
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.sessions.completed_sessions(limit=limit)


@router.get("/sessions/by-token/{session_token}")
def get_session_by_token(
    session_token: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.sessions.get_by_token(session_token)


# 3) One session
@router.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.sessions.get(session_id)


@router.post("/sessions/{session_id}/complete")
def complete_session(
    session_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.sessions.complete(session_id)


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    order_id = svc.sessions.delete(session_id)
    return {"ok": True, "order_id": order_id}


# 4) Order lines with what this session packed
@router.get("/sessions/{session_id}/lines")
def session_lines(
    session_id: str,
    force_refresh: bool = Query(False),
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    session = svc.sessions.get(session_id)
    return svc.ledger.line_view(session.order_id, session_id, force_refresh=force_refresh)


# 5) Scan check before adding to a carton
@router.post("/sessions/{session_id}/validate-scan")
def validate_scan(
    session_id: str,
    req: ValidateScanRequest,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.ledger.validate_scan(req.order_id, session_id, req.barcode)


# 6) Cartons of a session
@router.get("/sessions/{session_id}/cartons")
def session_cartons(
    session_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return svc.cartons.list_for_session(session_id)


@router.get("/sessions/{session_id}/cartons/current")
def current_carton(
    session_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    return {"carton": svc.cartons.current_open(session_id)}


@router.post("/sessions/{session_id}/cartons/open-next")
def open_next_carton(
    session_id: str,
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    carton = svc.cartons.open_next(session_id)
    if carton is None:
        return {"ok": True, "carton": None, "message": "No more boxes available."}
    return {"ok": True, "carton": carton}
