# packhouse/deps.py
from functools import lru_cache

from fastapi import HTTPException, Security
from fastapi.security.api_key import APIKeyHeader

from packhouse import config
from packhouse.db import Store
from packhouse.services.bundle import ServiceBundle, build_services

_api_key_header = APIKeyHeader(name=config.API_KEY_NAME, auto_error=False)

def require_key(x_api_key: str | None = Security(_api_key_header)):
    if not config.API_KEY or x_api_key != config.API_KEY:
        raise HTTPException(status_code=401, detail="Unauthorized")


@lru_cache(maxsize=1)
def get_services() -> ServiceBundle:
    # one bundle per process so locks and caches are shared by all requests
    return build_services(Store())
