# packhouse/routers/dbdiag.py

from fastapi import APIRouter, Depends

from packhouse.deps import get_services, require_key
from packhouse.services.bundle import ServiceBundle

router = APIRouter(prefix="/diag", tags=["diagnostics"])

@router.get("/db-ping")
def db_ping(
    svc: ServiceBundle = Depends(get_services),
    _=Depends(require_key),
):
    # store failures go through the PackhouseError handler (503/504)
    sessions = svc.store.ping()
    return {"ok": True, "sessions": int(sessions or 0)}
