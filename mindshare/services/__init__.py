"""
Services package for the mindshare tracker.

Fetch client, payload cache, trigger coordinator and the service facade.
"""

from .base import BaseService
from .leaderboard_cache import LeaderboardCache

__all__ = ['BaseService', 'LeaderboardCache']
