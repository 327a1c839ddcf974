# ordertrack/settings.py

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"

# --- Configuration ---
DB_NAME      = os.getenv("ORDERS_DB_NAME", "OrdersDB")
DB_VERSION   = int(os.getenv("ORDERS_DB_VERSION", "3"))
TABLE_NAME   = os.getenv("ORDERS_TABLE", "orders")
DATA_DIR     = os.getenv("ORDERS_DATA_DIR", "data")
DATABASE_URL = os.getenv("DATABASE_URL", "")
LOG_LEVEL    = os.getenv("LOG_LEVEL", "INFO")

HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))


def database_url_for(name: str, data_dir: str | None = None) -> str:
    """
    DATABASE_URL wins when set; otherwise every store name gets its own sqlite file
    under ORDERS_DATA_DIR.
    """
    if DATABASE_URL:
        return DATABASE_URL
    folder = Path(data_dir or DATA_DIR)
    folder.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{(folder / f'{name}.sqlite3').as_posix()}"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
