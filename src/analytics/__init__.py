"""
Pothole analytics: severity scoring and session aggregation.
"""

from .severity import RiskLevel, Severity, SizeCategory, assess, classify_size, risk_level
from .session import PotholeRecord, SessionAggregator

__all__ = [
    "RiskLevel",
    "Severity",
    "SizeCategory",
    "assess",
    "classify_size",
    "risk_level",
    "PotholeRecord",
    "SessionAggregator",
]
