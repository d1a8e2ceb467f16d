from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypedDict


CASE_CREATED = "case.created"
CASE_STATUS_CHANGED = "case.status_changed"
CASE_SUBMITTED = "case.submitted"
CASE_DOCS_REQUESTED = "case.docs_requested"
CASE_COMPLETED = "case.completed"
CASE_REJECTED = "case.rejected"
CASE_ASSIGNED = "case.assigned"
CASE_TRANSFERRED = "case.transferred"
CASE_FLAG_ADDED = "case.flag_added"


class DomainEventEnvelope(TypedDict):
    event_name: str
    firm_id: str
    actor_id: str
    timestamp: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class DomainEvent:
    event_name: str
    firm_id: str
    actor_id: str
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_envelope(self) -> DomainEventEnvelope:
        return {
            "event_name": self.event_name,
            "firm_id": self.firm_id,
            "actor_id": self.actor_id,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
        }
