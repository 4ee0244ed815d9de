"""
Site Search Engine

Crawls configured web sites into a lemmatized inverted index and answers
ranked keyword queries against it.
"""

__version__ = "1.0.0"
__description__ = "Crawler, lemmatizing indexer and ranked keyword search over configured sites"
