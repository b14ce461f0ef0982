import threading
from contextlib import contextmanager
from typing import Optional

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .config import settings, _env_int

_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)

_pool: Optional[ConnectionPool] = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    # Opened on first use so importing routers (tests, scripts) never dials the database.
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                _pool = ConnectionPool(
                    conninfo=settings.db_url,
                    min_size=_POOL_MIN,
                    max_size=_POOL_MAX,
                    kwargs={"row_factory": dict_row},
                    open=True,
                )
    return _pool


@contextmanager
def _pooled_conn():
    # `with get_conn() as conn:` commits on success, rolls back on exception
    # and hands the connection back to the pool.
    with _get_pool().connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn()


def close_pool() -> None:
    global _pool
    if _pool is not None:
        _pool.close()
        _pool = None
