from __future__ import annotations

from functools import lru_cache
from time import perf_counter
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

from fastapi import Depends, Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from handoff.config import Settings, get_settings
from handoff.logger import get_logger

_DB_LOGGER = get_logger("db")
_DB_SESSION_LOGGER = get_logger("db.session")
_QUERY_CONTEXT_STACK_KEY = "handoff_query_stack"
_SLOW_QUERY_MS = 200


def _truncate(value: str, max_length: int) -> str:
    if max_length <= 0 or len(value) <= max_length:
        return value
    if max_length <= 3:
        return value[:max_length]
    return f"{value[: max_length - 3]}..."


def _format_sql(statement: Any, max_length: int) -> str:
    return _truncate(" ".join(str(statement or "").split()), max_length)


def _format_params(parameters: Any, max_length: int) -> str:
    return _truncate(" ".join(repr(parameters).split()), max_length)


def _get_query_stack(connection: Any) -> list[dict[str, Any]]:
    stack = connection.info.get(_QUERY_CONTEXT_STACK_KEY)
    if isinstance(stack, list):
        return stack
    stack = []
    connection.info[_QUERY_CONTEXT_STACK_KEY] = stack
    return stack


def _install_query_logging(engine: AsyncEngine, *, settings: Settings) -> None:
    sync_engine = engine.sync_engine
    if getattr(sync_engine, "_handoff_query_logging", False):
        return
    setattr(sync_engine, "_handoff_query_logging", True)
    dialect = settings.database_url.split("://", maxsplit=1)[0]

    @event.listens_for(sync_engine, "before_cursor_execute")
    def _before_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        del cursor, context
        _get_query_stack(conn).append(
            {
                "start": perf_counter(),
                "statement": statement,
                "parameters": parameters,
                "executemany": executemany,
            }
        )

    @event.listens_for(sync_engine, "after_cursor_execute")
    def _after_cursor_execute(
        conn: Any,
        cursor: Any,
        statement: Any,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        del statement, parameters, context, executemany
        stack = _get_query_stack(conn)
        query_context = stack.pop() if stack else {}
        started_at = float(query_context.get("start", perf_counter()))
        duration_ms = round((perf_counter() - started_at) * 1000, 1)
        if not settings.log_db_queries:
            return

        sql = _format_sql(query_context.get("statement"), settings.log_sql_max_length)
        fields: dict[str, Any] = {
            "duration_ms": duration_ms,
            "rowcount": getattr(cursor, "rowcount", None),
            "sql": sql,
            "db": dialect,
        }
        if settings.log_db_query_params:
            fields["params"] = _format_params(
                query_context.get("parameters"),
                settings.log_sql_max_length,
            )
        _DB_LOGGER.debug("query.execute", "Executed SQL statement", **fields)

        if duration_ms >= _SLOW_QUERY_MS:
            _DB_LOGGER.warning("query.slow", "Slow SQL statement", duration_ms=duration_ms, sql=sql)

    @event.listens_for(sync_engine, "handle_error")
    def _handle_error(exception_context: Any) -> None:
        connection = exception_context.connection
        if connection is not None:
            stack = _get_query_stack(connection)
            if stack:
                stack.pop()
        _DB_LOGGER.error(
            "query.error",
            "SQL execution failed",
            error_type=type(exception_context.original_exception).__name__,
            error=str(exception_context.original_exception),
            sql=_format_sql(exception_context.statement, settings.log_sql_max_length),
        )


@lru_cache
def get_engine(database_url: str) -> AsyncEngine:
    settings = get_settings()
    engine = create_async_engine(database_url, pool_pre_ping=True)

    if database_url.startswith("sqlite"):

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    _install_query_logging(engine, settings=settings)
    return engine


@lru_cache
def get_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=get_engine(database_url), expire_on_commit=False)


async def get_db_session(
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(settings.database_url)
    session_id = uuid4().hex[:12]
    start = perf_counter()

    with _DB_SESSION_LOGGER.context(db_session_id=session_id):
        _DB_SESSION_LOGGER.debug("session.open", "Opened DB session")
        async with sessionmaker() as session:
            try:
                yield session
            except Exception as exc:
                if session.in_transaction():
                    await session.rollback()
                    _DB_SESSION_LOGGER.warning(
                        "session.rollback",
                        "Rolled back DB transaction after error",
                        error_type=type(exc).__name__,
                    )
                raise
            finally:
                _DB_SESSION_LOGGER.debug(
                    "session.close",
                    "Closed DB session",
                    duration_ms=round((perf_counter() - start) * 1000, 1),
                )


def get_subscriber_name(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> str:
    header_value = request.headers.get("x-subscriber-name", "").strip()
    return header_value or settings.subscriber_name


def get_operator_id(request: Request) -> Optional[str]:
    header_value = request.headers.get("x-operator-id", "").strip()
    return header_value or None
