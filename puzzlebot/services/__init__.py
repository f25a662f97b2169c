"""
Services package for the Puzzle Arc progression engine.

Services own read-side statistics and the rule engines (mood, achievements,
leaderboards) plus the adapters to external collaborators.
"""

from .base import BaseService

__all__ = ['BaseService']
