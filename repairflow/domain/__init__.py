"""Domain package: the estimate aggregate and its lifecycle. No I/O here.

Folder intent:
  estimate.py       Estimate aggregate + value objects (immutable pydantic models)
  state_machine.py  Transition table, guards and pure transition functions
  events.py         Events emitted by transitions, delivered by the notifier
  reminder.py       Expiry reminders

ORM rows live in repairflow/db/models.py.
"""

from repairflow.domain.estimate import Estimate, EstimateStatus
from repairflow.domain.events import DomainEvent, EventKind
from repairflow.domain.reminder import Reminder, ReminderStatus, ReminderType

__all__ = [
    "DomainEvent",
    "Estimate",
    "EstimateStatus",
    "EventKind",
    "Reminder",
    "ReminderStatus",
    "ReminderType",
]
