"""
Text normalization: markup removal, tokenization and lemma counting.
"""

import re
from collections import Counter
from typing import Dict, Iterable, List, Optional

from .morphology import MorphologyAnalyzer
from ..crawler.parser import ContentParser

# Runs of letters in any script; digits and punctuation separate tokens
_WORD = re.compile(r"[^\W\d_]+")


class TextNormalizer:
    """Turns HTML or plain text into lemma occurrence counts."""

    def __init__(self, analyzer: MorphologyAnalyzer, parser: Optional[ContentParser] = None):
        self.analyzer = analyzer
        self.parser = parser or ContentParser()

    def strip_markup(self, text: str) -> str:
        return self.parser.visible_text(text)

    def words(self, text: str, markup: bool = True) -> List[str]:
        """
        Case-folded tokens of the visible text, function words removed. Pass
        `markup=False` for text that is already plain, such as a query.
        """
        text = text or ""
        if markup:
            text = self.strip_markup(text)
        tokens = _WORD.findall(text.casefold())
        return [token for token in tokens if not self.analyzer.is_function_word(token)]

    def normalize(self, text: str, markup: bool = True) -> Dict[str, int]:
        """Map each lemma in `text` to the number of tokens having it as base form."""
        return dict(Counter(self.analyzer.lemma(word) for word in self.words(text, markup)))

    def cognate_form(self, text: str, word: str) -> str:
        """The word of `text` sharing `word`'s base form, or `word` itself if there is none."""
        return self.cognate_form_in(self.words(text), word)

    def cognate_form_in(self, words: Iterable[str], word: str) -> str:
        """Same as cognate_form, over an already tokenized text."""
        words = list(words)
        for form in self.analyzer.normal_forms(word.casefold()):
            for candidate in words:
                if self.analyzer.lemma(candidate) == form:
                    return candidate
        return word
