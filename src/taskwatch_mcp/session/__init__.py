"""Recording session lifecycle."""

from .controller import ACTIVE_STATES, RecordingSession, SessionController, SessionState
from .duration import DurationAccumulator, DurationSnapshot

__all__ = [
    "ACTIVE_STATES",
    "DurationAccumulator",
    "DurationSnapshot",
    "RecordingSession",
    "SessionController",
    "SessionState",
]
