# audit_stream/infrastructure/database/connection.py

"""
Connection manager: owns the primary engine and the LISTEN connection for the one configured store.

Transient network failures drop the engine handle; the next call rebuilds it lazily. Nothing is
queued during an outage: every caller gets the failure. Authentication and permission errors are
never retried; they need an operator.
"""

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence

import asyncpg
from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from audit_stream.application.exceptions import (
    ApplicationError,
    ConnectFailure,
    NotConnected,
    QueryFailure,
)
from audit_stream.application.listener import ListenConnection
from audit_stream.domain.models.audit import ActorContext, ConnectionConfig

ACTOR_SETTING = "app.current_user_name"

# Managed cloud Postgres endpoints refuse plaintext connections.
_SSL_HOST_MARKERS = ("supabase.co", "amazonaws.com", "azure.com")

_AUTH_ERRORS = (
    asyncpg.exceptions.InvalidPasswordError,
    asyncpg.exceptions.InvalidAuthorizationSpecificationError,
    asyncpg.exceptions.InsufficientPrivilegeError,
)

_TRANSIENT_ERRORS = (
    OSError,  # ConnectionResetError, ConnectionRefusedError, socket.gaierror, ...
    asyncio.TimeoutError,
    TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)

EngineFactory = Callable[[ConnectionConfig], AsyncEngine]
ListenConnector = Callable[[ConnectionConfig], Awaitable[ListenConnection]]


def requires_ssl(host: str) -> bool:
    return any(marker in host for marker in _SSL_HOST_MARKERS)


def build_url(config: ConnectionConfig) -> URL:
    return URL.create(
        "postgresql+asyncpg",
        username=config.user,
        password=config.password,
        host=config.host,
        port=config.port,
        database=config.database,
    )


def default_engine_factory(config: ConnectionConfig) -> AsyncEngine:
    connect_args: Dict[str, Any] = {}
    if requires_ssl(config.host):
        connect_args["ssl"] = "require"
    return create_async_engine(
        build_url(config),
        echo=False,
        pool_pre_ping=True,
        pool_size=1,
        max_overflow=0,
        connect_args=connect_args,
    )


async def default_listen_connector(config: ConnectionConfig) -> ListenConnection:
    return await asyncpg.connect(
        host=config.host,
        port=config.port,
        user=config.user,
        password=config.password,
        database=config.database,
        ssl="require" if requires_ssl(config.host) else None,
    )


def _causes(exc: BaseException) -> Iterator[BaseException]:
    """exc, the DBAPI error SQLAlchemy wrapped, and their causes."""
    seen = set()
    stack = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.extend([getattr(current, "orig", None), current.__cause__, current.__context__])


def is_auth_error(exc: BaseException) -> bool:
    return any(isinstance(c, _AUTH_ERRORS) for c in _causes(exc))


def is_transient_error(exc: BaseException) -> bool:
    if is_auth_error(exc):
        return False
    for cause in _causes(exc):
        if isinstance(cause, DBAPIError) and cause.connection_invalidated:
            return True
        if isinstance(cause, _TRANSIENT_ERRORS):
            return True
    return False


class ConnectionManager:
    """
    Exactly one primary engine (single pooled connection) and, independently, zero or one
    subscription connection. configure() is idempotent for an unchanged config; a new config
    tears everything down before anything new is built, so two stores are never live at once.
    """

    def __init__(
        self,
        engine_factory: EngineFactory = default_engine_factory,
        listen_connector: ListenConnector = default_listen_connector,
        actor_setting: str = ACTOR_SETTING,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._engine_factory = engine_factory
        self._listen_connector = listen_connector
        self._actor_setting = actor_setting
        self._logger = logger or logging.getLogger(__name__)
        self._config: Optional[ConnectionConfig] = None
        self._engine: Optional[AsyncEngine] = None
        self._subscription: Optional[Any] = None
        self._lock = asyncio.Lock()
        self._subscription_lock = asyncio.Lock()

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    @property
    def is_configured(self) -> bool:
        return self._config is not None

    @property
    def has_primary(self) -> bool:
        return self._engine is not None

    @property
    def has_subscription(self) -> bool:
        return self._subscription is not None and not self._subscription.is_closed()

    async def configure(self, config: ConnectionConfig) -> None:
        """Point at config. Raises ConnectFailure if the store is unreachable or rejects the credentials."""
        async with self._lock:
            if config == self._config and self._engine is not None:
                self._logger.info("connection_unchanged", extra=config.redacted())
                return

            await self._teardown()
            self._logger.info("connection_configuring", extra=config.redacted())
            engine: Optional[AsyncEngine] = None
            try:
                engine = self._engine_factory(config)
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
            except Exception as e:
                self._config = None
                self._logger.error(
                    "connection_failed",
                    extra={**config.redacted(), "error": str(e), "auth": is_auth_error(e)},
                )
                if engine is not None:
                    with contextlib.suppress(Exception):
                        await engine.dispose()
                raise ConnectFailure(f"Could not connect to {config.host}:{config.port}/{config.database}: {e}") from e

            self._config = config
            self._engine = engine
            self._logger.info("connection_established", extra=config.redacted())

    async def disconnect(self) -> None:
        async with self._lock:
            await self._teardown()
            self._config = None

    async def query(self, stmt: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run one statement; return its rows as dicts (empty for statements without rows)."""
        async with self._transaction() as conn:
            return await self._run(conn, stmt, params)

    async def execute(self, stmt: str, params: Optional[Dict[str, Any]] = None) -> None:
        async with self._transaction() as conn:
            await conn.execute(text(stmt), params or {})

    async def execute_batch(self, statements: Sequence[str]) -> None:
        """Run statements in one transaction: all of them take effect or none do."""
        async with self._transaction() as conn:
            for stmt in statements:
                await conn.execute(text(stmt))

    async def execute_mutation(
        self,
        stmt: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[ActorContext] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run a mutation attributed to context's actor. The actor is set transaction-locally,
        so it is visible to the capture hook of this statement only.
        """
        context = context or ActorContext()
        async with self._transaction() as conn:
            await conn.execute(
                text("SELECT set_config(:setting, :actor, true)"),
                {"setting": self._actor_setting, "actor": context.actor_name},
            )
            return await self._run(conn, stmt, params)

    async def run_sync(self, fn: Callable[..., Any]) -> Any:
        """Run a sync callable (e.g. MetaData.create_all) against a connection in one transaction."""
        async with self._transaction() as conn:
            return await conn.run_sync(fn)

    async def open_subscription(self) -> ListenConnection:
        """Return the LISTEN connection, opening it if needed. Never more than one is open."""
        async with self._subscription_lock:
            if self._config is None:
                raise NotConnected("No store configured")
            if self.has_subscription:
                return self._subscription
            try:
                self._subscription = await self._listen_connector(self._config)
            except Exception as e:
                self._subscription = None
                raise ConnectFailure(f"Could not open notification connection: {e}") from e
            self._logger.info("subscription_opened", extra=self._config.redacted())
            return self._subscription

    async def close_subscription(self) -> None:
        async with self._subscription_lock:
            subscription, self._subscription = self._subscription, None
            if subscription is None or subscription.is_closed():
                return
            try:
                await subscription.close()
            except Exception as e:
                self._logger.warning("subscription_close_failed", extra={"error": str(e)})
        self._logger.info("subscription_closed")

    @contextlib.asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """ORM session on the primary engine, with the same failure policy as query()."""
        engine = self._require_engine()
        session_factory = async_sessionmaker(
            bind=engine,
            expire_on_commit=False,
            autoflush=False,
            class_=AsyncSession,
        )
        try:
            async with session_factory() as session:
                yield session
        except ApplicationError:
            raise
        except Exception as e:
            raise await self._query_failure(e) from e

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncConnection]:
        engine = self._require_engine()
        try:
            async with engine.begin() as conn:
                yield conn
        except ApplicationError:
            raise
        except Exception as e:
            raise await self._query_failure(e) from e

    @staticmethod
    async def _run(conn: AsyncConnection, stmt: str, params: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        result = await conn.execute(text(stmt), params or {})
        if not result.returns_rows:
            return []
        return [dict(row) for row in result.mappings().all()]

    def _require_engine(self) -> AsyncEngine:
        if self._config is None:
            raise NotConnected("No store configured")
        if self._engine is None:
            self._logger.info("connection_reconnecting", extra=self._config.redacted())
            self._engine = self._engine_factory(self._config)
        return self._engine

    async def _query_failure(self, exc: Exception) -> QueryFailure:
        if is_auth_error(exc):
            self._logger.error("query_auth_failed", extra={"error": str(exc)})
            return QueryFailure(f"Store rejected credentials or permissions: {exc}", transient=False)
        if is_transient_error(exc):
            self._logger.warning("connection_dropped", extra={"error": str(exc)})
            engine, self._engine = self._engine, None
            if engine is not None:
                with contextlib.suppress(Exception):
                    await engine.dispose()
            return QueryFailure(f"Store unreachable: {exc}", transient=True)
        return QueryFailure(str(exc), transient=False)

    async def _teardown(self) -> None:
        await self.close_subscription()
        engine, self._engine = self._engine, None
        if engine is not None:
            try:
                await engine.dispose()
            except Exception as e:
                self._logger.warning("engine_dispose_failed", extra={"error": str(e)})
