"""
Session reporting.
"""

from .report import Hotspot, find_hotspots, render_report, write_report

__all__ = ["Hotspot", "find_hotspots", "render_report", "write_report"]
