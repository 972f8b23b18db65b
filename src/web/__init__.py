"""
Read-only web API for the pothole monitor.
"""
