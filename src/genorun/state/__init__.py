"""Job and input stores."""

from genorun.state.base import InputStore, JobStore
from genorun.state.memory import InMemoryInputStore, InMemoryJobStore
from genorun.state.sqlite import SqliteJobStore

__all__ = [
    "InMemoryInputStore",
    "InMemoryJobStore",
    "InputStore",
    "JobStore",
    "SqliteJobStore",
]
