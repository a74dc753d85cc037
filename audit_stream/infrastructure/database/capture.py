"""
Change capture emitter: runs in the store's mutation path and emits one change notification per row.

The same contract has two renditions here:
  * function_sql() -> the PL/pgSQL trigger function installed on PostgreSQL;
  * capture()      -> the Python observer for stores exposing a commit-path hook.
Neither persists the audit record (the dispatcher is the sole writer). A notification failure is
logged and swallowed: auditing must never block the application's write.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from audit_stream.domain.models.audit import DEFAULT_ACTOR, ActorContext, Operation
from audit_stream.domain.validators.change_validator import (
    validate_image_json_serializable,
    validate_images,
)

CAPTURE_FUNCTION = "audit_trigger_func"
CAPTURE_TRIGGER = "audit_trigger"
DEFAULT_CHANNEL = "audit_channel"
DEFAULT_ACTOR_SETTING = "app.current_user_name"

Notify = Callable[[str, str], None]


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class ChangeCaptureEmitter:
    def __init__(
        self,
        channel: str = DEFAULT_CHANNEL,
        actor_setting: str = DEFAULT_ACTOR_SETTING,
        notify: Optional[Notify] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._channel = channel
        self._actor_setting = actor_setting
        self._notify = notify
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    @property
    def channel(self) -> str:
        return self._channel

    def function_sql(self) -> str:
        """CREATE OR REPLACE statement for the trigger function. Safe to re-run."""
        channel = _sql_literal(self._channel)
        setting = _sql_literal(self._actor_setting)
        default_actor = _sql_literal(DEFAULT_ACTOR)
        return f"""
CREATE OR REPLACE FUNCTION {CAPTURE_FUNCTION}()
RETURNS TRIGGER AS $$
DECLARE
  actor TEXT;
  old_data JSON;
  new_data JSON;
BEGIN
  BEGIN
    actor := current_setting({setting}, true);
  EXCEPTION WHEN OTHERS THEN
    actor := NULL;
  END;
  IF actor IS NULL OR actor = '' THEN
    actor := {default_actor};
  END IF;

  IF (TG_OP = 'DELETE') THEN
    old_data := row_to_json(OLD);
    new_data := NULL;
  ELSIF (TG_OP = 'UPDATE') THEN
    old_data := row_to_json(OLD);
    new_data := row_to_json(NEW);
  ELSE
    old_data := NULL;
    new_data := row_to_json(NEW);
  END IF;

  BEGIN
    PERFORM pg_notify({channel}, json_build_object(
      'table_name', TG_TABLE_NAME,
      'operation', TG_OP,
      'user_name', actor,
      'old_data', old_data,
      'new_data', new_data,
      'timestamp', clock_timestamp()
    )::text);
  EXCEPTION WHEN OTHERS THEN
    RAISE WARNING USING MESSAGE = 'audit notification failed: ' || SQLERRM;
  END;

  IF (TG_OP = 'DELETE') THEN
    RETURN OLD;
  END IF;
  RETURN NEW;
END;
$$ LANGUAGE plpgsql
""".strip()

    @staticmethod
    def trigger_sql(table: str) -> str:
        quoted = '"' + table.replace('"', '""') + '"'
        return (
            f"CREATE TRIGGER {CAPTURE_TRIGGER} "
            f"AFTER INSERT OR UPDATE OR DELETE ON {quoted} "
            f"FOR EACH ROW EXECUTE FUNCTION {CAPTURE_FUNCTION}()"
        )

    def build_payload(
        self,
        entity: str,
        operation: Operation,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        context: Optional[ActorContext] = None,
    ) -> Dict[str, Any]:
        """Wire payload for one row change, in the same shape the trigger function produces."""
        validate_images(operation, before, after)
        validate_image_json_serializable(before)
        validate_image_json_serializable(after)
        actor = (context or ActorContext()).actor_name or DEFAULT_ACTOR
        return {
            "table_name": entity,
            "operation": operation.value,
            "user_name": actor,
            "old_data": before,
            "new_data": after,
            "timestamp": self._clock().isoformat(),
        }

    def capture(
        self,
        entity: str,
        operation: Operation,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        context: Optional[ActorContext] = None,
    ) -> bool:
        """Commit-path hook. Returns True if a notification went out; never raises."""
        if self._notify is None:
            self._logger.warning("capture_without_channel", extra={"entity": entity})
            return False
        try:
            payload = json.dumps(self.build_payload(entity, operation, before, after, context), default=str)
            self._notify(self._channel, payload)
        except Exception as e:
            self._logger.warning(
                "audit_notification_failed",
                extra={"entity": entity, "operation": operation.value, "error": str(e)},
            )
            return False
        return True
