"""Engine orchestration: per-symbol coordination and session scheduling."""

from .coordinator import Coordinator, SweepReport, SymbolOutcome
from .scheduler import SessionScheduler

__all__ = [
    "Coordinator",
    "SweepReport",
    "SymbolOutcome",
    "SessionScheduler",
]
