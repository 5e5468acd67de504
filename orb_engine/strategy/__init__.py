"""Strategy modules for the ORB engine.

Includes:
- Session calendar
- Breakout detection and confirmation scoring
- Risk planning and position sizing
- Retest monitoring
- Per-symbol state
"""

from .calendar import SessionCalendar
from .state import (
    DailyCounters,
    Direction,
    EntryKind,
    Phase,
    PendingRetest,
    SymbolState,
    SymbolStateStore,
    TradeType,
)
from .confirmation import ConfirmationScorer
from .breakout import (
    BreakoutSignal,
    DetectionResult,
    SignalDetector,
    check_trade_alignment,
)
from .risk import RiskEngine, RiskPlan, TradeDecision
from .retest import RetestAction, RetestDecision, RetestMonitor

__all__ = [
    "SessionCalendar",
    "DailyCounters",
    "Direction",
    "EntryKind",
    "Phase",
    "PendingRetest",
    "SymbolState",
    "SymbolStateStore",
    "TradeType",
    "ConfirmationScorer",
    "BreakoutSignal",
    "DetectionResult",
    "SignalDetector",
    "check_trade_alignment",
    "RiskEngine",
    "RiskPlan",
    "TradeDecision",
    "RetestAction",
    "RetestDecision",
    "RetestMonitor",
]
