"""
Audit Spine Manager

Append-only writer for the gate's audit ledger. Every governed action leaves
an INBOUND_ACTION record before its decision is requested, followed by a
PRECHECK_DECISION and, when the action ran, a TOOL_DISPATCH record. All three
carry the action's correlation id so the trail can be reassembled.

Expected table (hash chaining is handled by a database trigger)::

    audit_events(id uuid, created_at timestamptz, actor_id text,
                 action_type text, correlation_id text, intent_payload jsonb,
                 policy_version text, event_hash text, previous_event_hash text)
"""

from __future__ import annotations

import json
import time
from typing import Any

import psycopg2
import psycopg2.errors

POLICY_VERSION = "1.0.0"

INBOUND_ACTION = "INBOUND_ACTION"
PRECHECK_DECISION = "PRECHECK_DECISION"
TOOL_DISPATCH = "TOOL_DISPATCH"

_COLUMNS = (
    "id", "created_at", "actor_id", "action_type", "correlation_id",
    "intent_payload", "policy_version", "event_hash", "previous_event_hash",
)


def _row_to_event(row: tuple) -> dict[str, Any]:
    event = dict(zip(_COLUMNS, row))
    event["id"] = str(event["id"])
    return event


class AuditSpineManager:
    """
    Append-only writer for the audit_events ledger.

    Each call opens its own connection; the manager itself holds no
    connection state and is safe to share across requests.
    """

    def __init__(self, db_config: dict):
        self._db_config = db_config

    def _connect(self):
        return psycopg2.connect(**self._db_config)

    def log_event(
        self,
        actor_id: str,
        action_type: str,
        correlation_id: str,
        intent_payload: dict[str, Any],
        policy_version: str = POLICY_VERSION,
        _max_retries: int = 3,
    ) -> str:
        """
        Write an event to the Audit Spine and return its UUID.

        Retries on UniqueViolation (concurrent inserts racing for the same
        previous_event_hash) and on deadlocks.
        """
        for attempt in range(_max_retries):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    "INSERT INTO audit_events "
                    "(actor_id, action_type, correlation_id, intent_payload, policy_version) "
                    "VALUES (%s, %s, %s, %s, %s) "
                    "RETURNING id",
                    (
                        actor_id,
                        action_type,
                        correlation_id,
                        json.dumps(intent_payload, default=str),
                        policy_version,
                    ),
                )
                event_id = str(cur.fetchone()[0])
                conn.commit()
                cur.close()
                return event_id
            except (psycopg2.errors.UniqueViolation, psycopg2.errors.DeadlockDetected):
                conn.rollback()
                if attempt < _max_retries - 1:
                    time.sleep(0.05 * (attempt + 1))
                    continue
                raise
            finally:
                conn.close()
        raise RuntimeError("log_event: exhausted retries")

    def get_trail(self, correlation_id: str) -> list[dict[str, Any]]:
        """Return every event recorded for one governed action, oldest first."""
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM audit_events "
                "WHERE correlation_id = %s "
                "ORDER BY created_at ASC",
                (correlation_id,),
            )
            rows = cur.fetchall()
            cur.close()
            return [_row_to_event(row) for row in rows]
        finally:
            conn.close()
