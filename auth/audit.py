"""
auth/audit.py -- Append-only audit sink used by the state machine.

The state machine depends only on the AuditSink protocol. StoreAuditSink is
the production implementation; tests may pass any object with an append()
method.

Delivery contract: append() is synchronous, so the record is written before
the HTTP response goes out. The machine calls it only after the transition
itself has committed, and a failing sink never rolls the transition back --
record_event() logs the failure and returns.
"""

from __future__ import annotations

import logging
from typing import Protocol

from auth.models import AuditEvent
from auth.store import AccountStore

logger = logging.getLogger("accountgate.auth.audit")


class AuditSink(Protocol):
    def append(self, event: AuditEvent) -> None: ...


class StoreAuditSink:
    """Write audit events into the audit_log table of an AccountStore."""

    def __init__(self, store: AccountStore) -> None:
        self._store = store

    def append(self, event: AuditEvent) -> None:
        self._store.append_audit(event)


def record_event(sink: AuditSink, event: AuditEvent) -> bool:
    """Append an event, logging instead of raising when the sink fails.

    Returns True if the sink accepted the event.
    """
    try:
        sink.append(event)
    except Exception:
        logger.exception(
            "Audit sink failed for %s on %s %s",
            event.action.value,
            event.resource_type,
            event.resource_id,
        )
        return False
    return True
