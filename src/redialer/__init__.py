"""
Outbound lead redial scheduler.
"""

__version__ = "0.1.0"
