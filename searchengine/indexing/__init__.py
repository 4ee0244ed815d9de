"""
Lemmatization and index maintenance.
"""

from .morphology import MorphologyAnalyzer, MorphologyLoadError, NltkMorphology
from .normalizer import TextNormalizer
from .pipeline import FetchFailedError, PageIndexer

__all__ = ['MorphologyAnalyzer', 'MorphologyLoadError', 'NltkMorphology', 'TextNormalizer',
           'FetchFailedError', 'PageIndexer']
