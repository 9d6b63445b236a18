"""
Core services for vital-sign monitoring.

This package contains the rule-based risk scorer, the health score, the
AI-backed analysis with its fallback, and the streaming and history
plumbing around them.
"""

from .health_score import compute_health_score
from .history import HistoryStore, InMemoryHistoryStore
from .risk_scorer import assess_risk
from .vitals_collector import Result, SimulatedWristbandSource, VitalsSource, VitalsStream

__all__ = [
    "assess_risk",
    "compute_health_score",
    "HistoryStore",
    "InMemoryHistoryStore",
    "Result",
    "SimulatedWristbandSource",
    "VitalsSource",
    "VitalsStream",
]
