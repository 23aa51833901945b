"""
Smart Break - break reminders that know when to stay quiet
"""

__version__ = "0.1.0"

from .services.ledger import AdherenceLedger
from .services.pause_engine import PauseDecisionEngine, PauseDecision
from .services.timer import BreakTimer
from .services.insights import generate_insights
from .services.store import KeyValueStore
from .models.pause import PauseSignal, PauseReason

__all__ = [
    'AdherenceLedger',
    'PauseDecisionEngine',
    'PauseDecision',
    'BreakTimer',
    'generate_insights',
    'KeyValueStore',
    'PauseSignal',
    'PauseReason',
]
