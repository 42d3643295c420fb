# packhouse/main.py

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from packhouse import config
from packhouse.errors import PackhouseError
from packhouse.log import configure_logging
from packhouse.routers import cartons, dbdiag, intake, packing, shipments

configure_logging()
log = structlog.get_logger(__name__)


# Initialize FastAPI app
app = FastAPI(
    title="Packhouse API",
    version="1.0",
    description=(
        "Backend service for the packing station: "
        "intake of picked orders, packaging sessions, cartons, and shipment consolidation."
    ),
)

# Enable CORS (allow everything during development)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Change to specific origins in production
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PackhouseError)
async def packhouse_error_handler(request: Request, exc: PackhouseError):
    level = "error" if exc.status_code >= 500 else "info"
    getattr(log, level)("request.failed", path=request.url.path, kind=exc.kind, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


# Health check endpoint
@app.get("/healthz")
def healthz():
    return {"ok": True, "env": config.ENV_NAME}

# Register routers
app.include_router(intake.router)
app.include_router(packing.router)
app.include_router(cartons.router)
app.include_router(shipments.router)
app.include_router(dbdiag.router)

# Startup event
@app.on_event("startup")
async def startup_event():
    log.info("api.started", env=config.ENV_NAME)
