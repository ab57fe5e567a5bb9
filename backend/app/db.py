import os
from contextlib import contextmanager

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .config import settings
from .logs import json_log

# The app pool connects as a role subject to row-level security; the admin pool
# (service role) serves the storefront checkout, the payment webhook and the
# public catalog, where there is no signed-in user.
DATABASE_URL = os.getenv("APP_DATABASE_URL") or settings.db_url
DATABASE_URL_ADMIN = os.getenv("DATABASE_URL_ADMIN") or settings.db_url


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _make_pool(conninfo: str, min_env: str, max_env: str, min_default: int, max_default: int) -> ConnectionPool:
    return ConnectionPool(
        conninfo=conninfo,
        min_size=_env_int(min_env, min_default),
        max_size=_env_int(max_env, max_default),
        kwargs={"row_factory": dict_row},
        open=False,
    )


_pool = _make_pool(DATABASE_URL, "DB_POOL_MIN_SIZE", "DB_POOL_MAX_SIZE", 1, 10)
_admin_pool = _make_pool(DATABASE_URL_ADMIN, "DB_ADMIN_POOL_MIN_SIZE", "DB_ADMIN_POOL_MAX_SIZE", 1, 5)


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # Commits on success, rolls back on exception, returns the connection to the pool.
    if pool.closed:
        pool.open()
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_pool)


def get_admin_conn():
    return _pooled_conn(_admin_pool)


def open_pools() -> None:
    for pool in (_pool, _admin_pool):
        if pool.closed:
            pool.open()


def close_pools() -> None:
    for name, pool in (("app", _pool), ("admin", _admin_pool)):
        try:
            pool.close()
        except Exception as exc:
            json_log("warning", "db.pool_close_failed", pool=name, error=str(exc))


def set_user_context(conn, user_id: str):
    """
    Makes `auth.uid()` return the caller for the rest of the transaction so the
    row-level security policies apply to them.
    """
    with conn.cursor() as cur:
        # `SET ... = %s` is not valid with the extended query protocol; use set_config().
        cur.execute(
            "SELECT set_config('request.jwt.claim.sub', %s::text, true)",
            (user_id,),
        )
