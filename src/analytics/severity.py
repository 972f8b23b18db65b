"""
Pothole severity: size category and risk level.

Size is judged by box area as a fraction of the frame, so thresholds hold for
any resolution. The defaults reproduce 5000 / 15000 square pixels on the
1020x500 reference display. Risk grows with size and with closeness to the
middle of the road (vertical centre of the frame).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from models.config import SeverityConfig
from models.detection import BoundingBox


class SizeCategory(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"

    @property
    def base_risk(self) -> int:
        return {SizeCategory.SMALL: 0, SizeCategory.MEDIUM: 1, SizeCategory.LARGE: 2}[self]


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}[self]


@dataclass(frozen=True)
class Severity:
    size: SizeCategory
    risk: RiskLevel
    area: float
    center_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size.value,
            "risk": self.risk.value,
            "area": self.area,
            "center_factor": self.center_factor,
        }


def classify_size(area: float, cfg: Optional[SeverityConfig] = None) -> SizeCategory:
    """Size category for a frame-normalized box area."""
    cfg = cfg or SeverityConfig()
    if area < cfg.small_area:
        return SizeCategory.SMALL
    if area > cfg.large_area:
        return SizeCategory.LARGE
    return SizeCategory.MEDIUM


def center_factor(center_y: float) -> float:
    """1 at the vertical centre of the frame, 0 at the top/bottom edge."""
    return max(0.0, 1.0 - abs(center_y - 0.5) / 0.5)


def risk_level(size: SizeCategory, center_y: float) -> RiskLevel:
    score = size.base_risk + center_factor(center_y)
    if score >= 2:
        return RiskLevel.HIGH
    if score >= 1:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def assess(box: BoundingBox, cfg: Optional[SeverityConfig] = None) -> Severity:
    """Size and risk for a frame-normalized box."""
    size = classify_size(box.area, cfg)
    cy = box.center[1]
    return Severity(size=size, risk=risk_level(size, cy), area=box.area, center_factor=center_factor(cy))
