"""
Application services built on top of the crawler and the index.
"""

from .statistics import Statistics, SiteStatistics, StatisticsService, TotalStatistics

__all__ = ['Statistics', 'SiteStatistics', 'StatisticsService', 'TotalStatistics']
