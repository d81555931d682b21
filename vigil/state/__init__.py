"""State stores: history, sessions, schedules, heartbeat and the alert mailbox.

Public API: the store classes plus the schema types from schemas.py.
"""

from vigil.state.heartbeat import HeartbeatStateStore
from vigil.state.history import HistoryStore
from vigil.state.mailbox import AlertMailbox
from vigil.state.schedules import ScheduleStore
from vigil.state.schemas import CronJob, HeartbeatState, ReconcileResult, Role, Turn
from vigil.state.sessions import SessionRegistry

__all__ = [
    "AlertMailbox",
    "HeartbeatStateStore",
    "HistoryStore",
    "ScheduleStore",
    "SessionRegistry",
    # Schemas
    "CronJob",
    "HeartbeatState",
    "ReconcileResult",
    "Role",
    "Turn",
]
