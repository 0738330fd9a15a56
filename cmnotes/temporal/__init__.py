"""
Temporal primitives: injectable clocks and session boundaries.
"""

from .clock import SystemClock, ManualClock, SessionBoundary

__all__ = ['SystemClock', 'ManualClock', 'SessionBoundary']
