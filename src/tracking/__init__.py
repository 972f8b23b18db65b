"""
Tracking module.

The canonical tracker implementation is in tracking.tracker.
"""

from .tracker import PotholeTracker

__all__ = ["PotholeTracker"]
