"""
Schema installer: idempotently brings a store up to what the audit pipeline needs.

Steps, in order:
  1. watched entity tables exist, with every expected column and column default (introspected);
  2. capture triggers are removed from every table that is not a watched entity;
  3. the capture function is (re)created and each watched entity's trigger is replaced, drop and
     create in one transaction so the entity is never left without a hook;
  4. audit and alert tables exist with every expected column, timezone-aware timestamps and indexes.
Every statement is IF [NOT] EXISTS / OR REPLACE, so a failed run can simply be re-run.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from sqlalchemy import DateTime, Table
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateColumn

from audit_stream.application.exceptions import ApplicationError, SetupFailure
from audit_stream.infrastructure.database.capture import (
    CAPTURE_FUNCTION,
    CAPTURE_TRIGGER,
    ChangeCaptureEmitter,
)
from audit_stream.infrastructure.database.models import AUDIT_TABLES, WATCHED_TABLES

TOUCH_FUNCTION = "update_updated_at_column"
TOUCH_COLUMN = "updatedAt"

STEP_ENTITIES = "verify_entities"
STEP_REMOVE_HOOKS = "remove_capture_hooks"
STEP_INSTALL_HOOKS = "install_capture_hooks"
STEP_AUDIT_TABLES = "create_audit_tables"

_DIALECT = postgresql.dialect()

TOUCH_FUNCTION_SQL = f"""
CREATE OR REPLACE FUNCTION {TOUCH_FUNCTION}()
RETURNS TRIGGER AS $$
BEGIN
  NEW."{TOUCH_COLUMN}" = NOW();
  RETURN NEW;
END;
$$ LANGUAGE plpgsql
""".strip()


class SqlExecutor(Protocol):
    """What the installer needs from the connection manager."""

    async def query(self, stmt: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...
    async def execute(self, stmt: str, params: Optional[Dict[str, Any]] = None) -> None: ...
    async def execute_batch(self, statements: Sequence[str]) -> None: ...
    async def run_sync(self, fn: Any) -> Any: ...


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _compile(clause: Any) -> str:
    return str(clause.compile(dialect=_DIALECT, compile_kwargs={"literal_binds": True}))


def server_default_sql(column: Any) -> Optional[str]:
    default = column.server_default
    if default is None:
        return None
    arg = default.arg
    return arg if isinstance(arg, str) else _compile(arg)


class SchemaInstaller:
    def __init__(
        self,
        executor: SqlExecutor,
        emitter: ChangeCaptureEmitter,
        watched_entities: Iterable[str] = tuple(WATCHED_TABLES),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        watched = list(dict.fromkeys(watched_entities))
        hooked_audit_tables = set(watched) & set(AUDIT_TABLES)
        if hooked_audit_tables:
            raise ValueError(f"Audit tables cannot be watched: {sorted(hooked_audit_tables)}")
        self._executor = executor
        self._emitter = emitter
        self._watched = watched
        self._logger = logger or logging.getLogger(__name__)

    @property
    def watched_entities(self) -> List[str]:
        return list(self._watched)

    async def ensure_infrastructure(self) -> None:
        """Run all steps. Raises SetupFailure naming the step that failed."""
        await self._step(STEP_ENTITIES, self._ensure_entities)
        await self._step(STEP_REMOVE_HOOKS, self._remove_capture_hooks)
        await self._step(STEP_INSTALL_HOOKS, self._install_capture_hooks)
        await self._step(STEP_AUDIT_TABLES, self._ensure_audit_tables)
        self._logger.info("audit_infrastructure_ready", extra={"watched_entities": self._watched})

    async def describe(self) -> Dict[str, Any]:
        """Installed capture triggers, capture function presence and audit table columns."""
        triggers = await self._executor.query(
            "SELECT event_object_table AS table_name, event_manipulation AS operation, action_timing AS timing "
            "FROM information_schema.triggers "
            "WHERE trigger_schema = 'public' AND trigger_name = :trigger "
            "ORDER BY event_object_table, event_manipulation",
            {"trigger": CAPTURE_TRIGGER},
        )
        function = await self._executor.query(
            "SELECT 1 AS present FROM pg_proc WHERE proname = :name",
            {"name": CAPTURE_FUNCTION},
        )
        hooked: Dict[str, List[str]] = {}
        for row in triggers:
            hooked.setdefault(row["table_name"], []).append(row["operation"])
        audit_columns = {}
        for table in AUDIT_TABLES:
            rows = await self._columns(table)
            audit_columns[table] = [r["column_name"] for r in rows]
        return {
            "capture_function_installed": bool(function),
            "hooked_tables": hooked,
            "watched_entities": list(self._watched),
            "audit_table_columns": audit_columns,
        }

    async def _step(self, name: str, fn: Any) -> None:
        self._logger.info("setup_step_started", extra={"step": name})
        try:
            await fn()
        except SetupFailure:
            raise
        except ApplicationError as e:
            self._logger.error("setup_step_failed", extra={"step": name, "error": e.message})
            raise SetupFailure(e.message, step=name) from e
        except Exception as e:
            self._logger.error("setup_step_failed", extra={"step": name, "error": str(e)})
            raise SetupFailure(str(e), step=name) from e

    async def _columns(self, table: str) -> List[Dict[str, Any]]:
        return await self._executor.query(
            "SELECT column_name, column_default, is_nullable, data_type "
            "FROM information_schema.columns "
            "WHERE table_name = :table AND table_schema = 'public'",
            {"table": table},
        )

    # -- Step 1 --------------------------------------------------------------

    async def _ensure_entities(self) -> None:
        touched = False
        for entity in self._watched:
            table = WATCHED_TABLES.get(entity)
            if table is None:
                # Externally managed table: only its capture hook is ours.
                self._logger.info("entity_schema_unmanaged", extra={"entity": entity})
                continue
            await self._ensure_entity(table)
            if TOUCH_COLUMN in table.c:
                if not touched:
                    await self._executor.execute(TOUCH_FUNCTION_SQL)
                    touched = True
                await self._install_touch_trigger(table)

    async def _ensure_entity(self, table: Table) -> None:
        existing = {row["column_name"]: row for row in await self._columns(table.name)}
        if not existing:
            self._logger.info("entity_table_created", extra={"entity": table.name})
            await self._executor.run_sync(lambda conn: table.create(conn, checkfirst=True))
            return
        await self._reconcile_columns(table, existing)

    async def _reconcile_columns(self, table: Table, existing: Dict[str, Dict[str, Any]]) -> None:
        """Add missing columns, restore missing defaults and make naive timestamps timezone-aware."""
        ident = quote_ident(table.name)
        for column in table.columns:
            current = existing.get(column.name)
            if current is None:
                ddl = _compile(CreateColumn(column))
                self._logger.info("column_added", extra={"table": table.name, "column": column.name})
                await self._executor.execute(f"ALTER TABLE {ident} ADD COLUMN IF NOT EXISTS {ddl}")
                continue
            column_ident = quote_ident(column.name)
            if (
                isinstance(column.type, DateTime)
                and column.type.timezone
                and current.get("data_type") == "timestamp without time zone"
            ):
                # Existing naive values were written as UTC.
                self._logger.info("column_made_timezone_aware", extra={"table": table.name, "column": column.name})
                await self._executor.execute(
                    f"ALTER TABLE {ident} ALTER COLUMN {column_ident} "
                    f"TYPE TIMESTAMP WITH TIME ZONE USING {column_ident} AT TIME ZONE 'UTC'"
                )
            default = server_default_sql(column)
            if default is not None and current.get("column_default") is None:
                self._logger.info("column_default_reconciled", extra={"table": table.name, "column": column.name})
                await self._executor.execute(
                    f"ALTER TABLE {ident} ALTER COLUMN {column_ident} SET DEFAULT {default}"
                )

    async def _install_touch_trigger(self, table: Table) -> None:
        trigger = f"update_{table.name.lower()}_updated_at"
        ident = quote_ident(table.name)
        await self._executor.execute_batch(
            [
                f"DROP TRIGGER IF EXISTS {trigger} ON {ident}",
                f"CREATE TRIGGER {trigger} BEFORE UPDATE ON {ident} "
                f"FOR EACH ROW EXECUTE FUNCTION {TOUCH_FUNCTION}()",
            ]
        )

    # -- Step 2 --------------------------------------------------------------

    async def _remove_capture_hooks(self) -> None:
        tables = await self._executor.query(
            "SELECT tablename FROM pg_tables WHERE schemaname = 'public'"
        )
        watched = set(self._watched)
        for row in tables:
            # Watched entities keep their hook until step 3 swaps it.
            if row["tablename"] in watched:
                continue
            await self._executor.execute(
                f"DROP TRIGGER IF EXISTS {CAPTURE_TRIGGER} ON {quote_ident(row['tablename'])}"
            )

    # -- Step 3 --------------------------------------------------------------

    async def _install_capture_hooks(self) -> None:
        await self._executor.execute(self._emitter.function_sql())
        for entity in self._watched:
            exists = await self._executor.query(
                "SELECT 1 AS present FROM pg_tables WHERE tablename = :table AND schemaname = 'public'",
                {"table": entity},
            )
            if not exists:
                self._logger.warning("capture_hook_skipped_missing_table", extra={"entity": entity})
                continue
            await self._executor.execute_batch(
                [
                    f"DROP TRIGGER IF EXISTS {CAPTURE_TRIGGER} ON {quote_ident(entity)}",
                    self._emitter.trigger_sql(entity),
                ]
            )
            self._logger.info("capture_hook_installed", extra={"entity": entity})

    # -- Step 4 --------------------------------------------------------------

    async def _ensure_audit_tables(self) -> None:
        tables = list(AUDIT_TABLES.values())
        for table in tables:
            existing = {row["column_name"]: row for row in await self._columns(table.name)}
            if existing:
                await self._reconcile_columns(table, existing)

        def _create(conn: Any) -> None:
            for table in tables:
                table.create(conn, checkfirst=True)
                # create(checkfirst) skips indexes when the table already existed.
                for index in table.indexes:
                    index.create(conn, checkfirst=True)

        await self._executor.run_sync(_create)
