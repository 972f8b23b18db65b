"""
Plain-text session report.

Summarizes one analysis session: source information, pothole size and risk
distributions, a 0-10 road severity rating, hotspots (clusters of nearby
potholes), a per-pothole list and maintenance recommendations.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from analytics.session import PotholeRecord, SessionAggregator
from models.config import SeverityConfig

RULE_WIDTH = 80
MIN_HOTSPOT_SIZE = 3
MAX_HOTSPOTS = 5


@dataclass(frozen=True)
class Hotspot:
    center: Tuple[float, float]
    count: int


def _display_center(record: PotholeRecord, reference_size: Tuple[int, int]) -> Tuple[float, float]:
    cx, cy = record.bbox.center
    return (cx * reference_size[0], cy * reference_size[1])


def find_hotspots(
    potholes: List[PotholeRecord],
    radius_px: float = 50.0,
    reference_size: Tuple[int, int] = (1020, 500),
) -> List[Hotspot]:
    """
    Find clusters of at least three potholes within ``radius_px`` of each other.

    Distances are measured on the reference display. A pothole whose centre
    is within the radius of an already reported hotspot does not start a new
    one. Result is ordered by count, largest first.
    """
    if len(potholes) < MIN_HOTSPOT_SIZE:
        return []

    centers = [_display_center(p, reference_size) for p in potholes]
    hotspots: List[Hotspot] = []
    for i, center in enumerate(centers):
        nearby = sum(
            1 for j, other in enumerate(centers)
            if j != i and math.dist(center, other) < radius_px
        )
        if nearby + 1 < MIN_HOTSPOT_SIZE:
            continue
        if any(math.dist(center, h.center) < radius_px for h in hotspots):
            continue
        hotspots.append(Hotspot(center=center, count=nearby + 1))

    hotspots.sort(key=lambda h: h.count, reverse=True)
    return hotspots


def _recommendations(rating: float) -> List[str]:
    if rating >= 7:
        return [
            "URGENT ATTENTION REQUIRED: The analyzed road section shows significant pothole damage "
            "that requires immediate repair.",
            "- Prioritize the identified hotspot areas for immediate patching.",
            "- Consider complete resurfacing for long-term solution.",
            "- Place warning signs for drivers about dangerous road conditions.",
        ]
    if rating >= 4:
        return [
            "MODERATE ATTENTION NEEDED: The analyzed road section shows moderate pothole damage "
            "that should be addressed soon.",
            "- Schedule repairs for high-risk potholes within the next maintenance cycle.",
            "- Monitor the identified hotspots for further deterioration.",
        ]
    return [
        "MINOR ATTENTION SUGGESTED: The analyzed road section shows minimal pothole damage.",
        "- Address the few identified potholes during regular maintenance cycles.",
        "- Re-analyze the road after adverse weather conditions to monitor degradation.",
    ]


def render_report(
    aggregator: SessionAggregator,
    source_name: str,
    model_name: str = "",
    generated_at: Optional[datetime] = None,
    cfg: Optional[SeverityConfig] = None,
) -> str:
    """Render the session report as text."""
    cfg = cfg or aggregator.cfg
    generated_at = generated_at or datetime.now()
    summary = aggregator.summary()
    potholes = aggregator.potholes()
    ref_w, ref_h = cfg.reference_size
    ref_area = ref_w * ref_h
    rule = "-" * RULE_WIDTH

    lines = [
        "=" * RULE_WIDTH,
        "POTHOLE DETECTION ANALYSIS REPORT",
        f"Generated on: {generated_at:%Y-%m-%d %H:%M:%S}",
        "=" * RULE_WIDTH,
        "",
        "SOURCE INFORMATION",
        rule,
        f"Source: {source_name}",
        f"Duration: {summary['duration_s']:.2f} seconds",
        f"Frames analyzed: {summary['frames_processed']}",
    ]
    if model_name:
        lines.append(f"Model used: {model_name}")
    lines.append("")

    sizes = summary["size_counts"]
    risks = summary["risk_counts"]
    lines += [
        "SUMMARY STATISTICS",
        rule,
        f"Total unique potholes detected: {summary['unique_potholes']}",
        "Pothole size distribution:",
        f"  - Small: {sizes['small']}",
        f"  - Medium: {sizes['medium']}",
        f"  - Large: {sizes['large']}",
        "",
        "Risk level distribution:",
        f"  - Low risk: {risks['low']}",
        f"  - Medium risk: {risks['medium']}",
        f"  - High risk: {risks['high']}",
        "",
        f"Average pothole area: {summary['average_area'] * ref_area:.2f} square pixels "
        f"({ref_w}x{ref_h} reference display)",
        f"Overall road condition severity rating (0-10): {summary['severity_rating']:.1f}",
        "",
        "HOTSPOT ANALYSIS",
        rule,
    ]

    hotspots = find_hotspots(potholes, cfg.hotspot_radius_px, cfg.reference_size)
    if hotspots:
        lines.append(f"Identified {len(hotspots)} hotspot areas with multiple potholes:")
        for i, hotspot in enumerate(hotspots[:MAX_HOTSPOTS], start=1):
            x, y = hotspot.center
            lines.append(f"  {i}. Location: x={x:.0f}, y={y:.0f} - {hotspot.count} potholes in proximity")
    else:
        lines.append("No significant hotspots identified.")
    lines.append("")

    lines += ["DETAILED POTHOLE INFORMATION", rule]
    ranked = sorted(potholes, key=lambda p: p.severity.risk.rank, reverse=True)
    for i, pothole in enumerate(ranked, start=1):
        x, y = _display_center(pothole, cfg.reference_size)
        lines += [
            f"Pothole #{i} (track {pothole.track_id}):",
            f"  - Size category: {pothole.severity.size.value.capitalize()}",
            f"  - Area: {pothole.severity.area * ref_area:.2f} square pixels",
            f"  - Risk level: {pothole.severity.risk.value.capitalize()}",
            f"  - Position: x={x:.0f}, y={y:.0f}",
            f"  - Peak confidence: {pothole.peak_confidence:.2f}",
            "",
        ]

    lines += ["RECOMMENDATIONS", rule]
    lines += _recommendations(summary["severity_rating"])
    return "\n".join(lines) + "\n"


def write_report(
    aggregator: SessionAggregator,
    report_dir: str,
    source_name: str,
    model_name: str = "",
) -> str:
    """
    Write the report to ``report_dir`` and return its path.

    The file is named after the source and the generation time.
    """
    os.makedirs(report_dir, exist_ok=True)
    now = datetime.now()
    stem = os.path.splitext(os.path.basename(str(source_name)))[0] or "session"
    path = os.path.join(report_dir, f"pothole_report_{stem}_{now:%Y%m%d_%H%M%S}.txt")

    with open(path, "w", encoding="utf-8") as f:
        f.write(render_report(aggregator, source_name, model_name=model_name, generated_at=now))
    logging.info(f"Report written: {path}")
    return path
