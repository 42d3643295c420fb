# packhouse/config.py

import os

from dotenv import load_dotenv

load_dotenv()

# ----- API -----
API_KEY = os.getenv("API_KEY", "dev-key")
API_KEY_NAME = "X-API-Key"

# ----- SQL Server (pyodbc) -----
ODBC_DRIVER = os.getenv("ODBC_DRIVER", "ODBC Driver 18 for SQL Server")
AZURE_SQL_SERVER = os.getenv("AZURE_SQL_SERVER")      # tcp:<server>.database.windows.net
AZURE_SQL_DB = os.getenv("AZURE_SQL_DB")
AZURE_SQL_USER = os.getenv("AZURE_SQL_USER")
AZURE_SQL_PASSWORD = os.getenv("AZURE_SQL_PASSWORD")

QUERY_TIMEOUT = int(os.getenv("PACKHOUSE_QUERY_TIMEOUT", "30"))  # seconds, 0 = driver default
# SERIALIZABLE keeps the ledger and shipment guards safe across API processes
ISOLATION_LEVEL = os.getenv("PACKHOUSE_ISOLATION_LEVEL", "SERIALIZABLE")

# ----- Result caches -----
CACHE_MAX_ENTRIES = int(os.getenv("PACKHOUSE_CACHE_MAX_ENTRIES", "10"))
CACHE_TTL = float(os.getenv("PACKHOUSE_CACHE_TTL", "5"))
SHIPMENT_CACHE_TTL = float(os.getenv("PACKHOUSE_SHIPMENT_CACHE_TTL", "120"))

# ----- Logging -----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")  # console | json

ENV_NAME = os.getenv("PACKHOUSE_ENV", "dev")
