from typing import Any, Optional, Sequence

import psycopg
from psycopg import errors as pg_errors

from .errors import MissingDbFunctionError, PersistenceError


def call_rpc(cur, function_name: str, params: Sequence[Any] = (), *, fetch: Optional[str] = None):
    """
    Invokes a stored procedure as `SELECT * FROM fn(%s, ...)`.

    fetch: None (no result), "one" or "all".
    A missing function is reported by name only; any other database error
    is passed through verbatim as a persistence error.
    """
    placeholders = ", ".join(["%s"] * len(params))
    try:
        cur.execute(f"SELECT * FROM {function_name}({placeholders})", tuple(params))
        if fetch == "one":
            return cur.fetchone()
        if fetch == "all":
            return cur.fetchall()
        return None
    except pg_errors.UndefinedFunction as exc:
        raise MissingDbFunctionError(function_name) from exc
    except psycopg.Error as exc:
        raise PersistenceError(pg_message(exc)) from exc


def pg_message(exc: Exception) -> str:
    diag = getattr(exc, "diag", None)
    primary = getattr(diag, "message_primary", None) if diag is not None else None
    return str(primary or exc).strip()
