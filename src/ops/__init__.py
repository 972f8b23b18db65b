"""
Operational helpers: logging setup.
"""
