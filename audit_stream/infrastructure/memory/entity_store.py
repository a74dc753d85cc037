"""In-memory entity store with commit-path hooks. Stands in for PostgreSQL in local runs and tests."""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from audit_stream.domain.models.audit import ActorContext, Operation
from audit_stream.infrastructure.database.capture import ChangeCaptureEmitter

logger = logging.getLogger(__name__)

CommitHook = Callable[[str, Operation, Optional[Dict[str, Any]], Optional[Dict[str, Any]], ActorContext], Any]


class RowNotFound(LookupError):
    pass


class InMemoryEntityStore:
    """
    Tables of dict rows keyed by an auto-incremented id. Every committed mutation runs the
    hooks registered for its entity, after the row change is applied. A failing hook is
    logged and never undoes or blocks the mutation.
    """

    def __init__(self, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self._tables: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self._next_id: Dict[str, int] = {}
        self._hooks: Dict[str, List[CommitHook]] = {}
        self._clock = clock

    def register_hook(self, entity: str, hook: CommitHook) -> None:
        self._hooks.setdefault(entity, []).append(hook)

    def remove_hooks(self, entity: Optional[str] = None) -> None:
        if entity is None:
            self._hooks.clear()
        else:
            self._hooks.pop(entity, None)

    def hooked_entities(self) -> List[str]:
        return sorted(e for e, hooks in self._hooks.items() if hooks)

    def rows(self, entity: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._tables.get(entity, {}).values()]

    def get(self, entity: str, row_id: int) -> Optional[Dict[str, Any]]:
        row = self._tables.get(entity, {}).get(row_id)
        return copy.deepcopy(row) if row is not None else None

    def insert(self, entity: str, values: Dict[str, Any], context: Optional[ActorContext] = None) -> Dict[str, Any]:
        table = self._tables.setdefault(entity, {})
        row_id = self._next_id.get(entity, 1)
        self._next_id[entity] = row_id + 1
        now = self._clock().isoformat()
        row = {"id": row_id, **values, "createdAt": now, "updatedAt": now}
        table[row_id] = row
        self._commit(entity, Operation.INSERT, None, row, context)
        return copy.deepcopy(row)

    def update(
        self,
        entity: str,
        row_id: int,
        changes: Dict[str, Any],
        context: Optional[ActorContext] = None,
    ) -> Dict[str, Any]:
        table = self._tables.get(entity, {})
        if row_id not in table:
            raise RowNotFound(f"{entity} row {row_id} not found")
        before = copy.deepcopy(table[row_id])
        after = {**before, **changes, "id": row_id, "updatedAt": self._clock().isoformat()}
        table[row_id] = after
        self._commit(entity, Operation.UPDATE, before, after, context)
        return copy.deepcopy(after)

    def delete(self, entity: str, row_id: int, context: Optional[ActorContext] = None) -> Dict[str, Any]:
        table = self._tables.get(entity, {})
        if row_id not in table:
            raise RowNotFound(f"{entity} row {row_id} not found")
        before = table.pop(row_id)
        self._commit(entity, Operation.DELETE, before, None, context)
        return copy.deepcopy(before)

    def _commit(
        self,
        entity: str,
        operation: Operation,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        context: Optional[ActorContext],
    ) -> None:
        context = context or ActorContext()
        for hook in list(self._hooks.get(entity, [])):
            try:
                hook(entity, operation, copy.deepcopy(before), copy.deepcopy(after), context)
            except Exception as e:
                logger.warning(
                    "commit_hook_failed",
                    extra={"entity": entity, "operation": operation.value, "error": str(e)},
                )


def install_capture_hooks(
    store: InMemoryEntityStore,
    emitter: ChangeCaptureEmitter,
    entities: Iterable[str],
) -> None:
    """Replace all capture hooks on store with one emitter hook per entity."""
    store.remove_hooks()
    for entity in dict.fromkeys(entities):
        store.register_hook(entity, emitter.capture)


class InMemorySchemaInstaller:
    """Schema installer counterpart for InMemoryEntityStore: tables are implicit, only hooks are installed."""

    def __init__(
        self,
        store: InMemoryEntityStore,
        emitter: ChangeCaptureEmitter,
        watched_entities: Iterable[str],
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._watched = list(dict.fromkeys(watched_entities))

    async def ensure_infrastructure(self) -> None:
        install_capture_hooks(self._store, self._emitter, self._watched)
        logger.info("audit_infrastructure_ready", extra={"watched_entities": self._watched})

    async def describe(self) -> Dict[str, Any]:
        return {
            "capture_function_installed": True,
            "hooked_tables": {e: [op.value for op in Operation] for e in self._store.hooked_entities()},
            "watched_entities": list(self._watched),
            "audit_table_columns": {},
        }
