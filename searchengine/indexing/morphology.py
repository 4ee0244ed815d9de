"""
Morphological analysis: base forms and part-of-speech tags of single words.
"""

import logging
from typing import Dict, List

from nltk.corpus import wordnet
from nltk.stem import WordNetLemmatizer
from nltk.tag.perceptron import PerceptronTagger

# Penn Treebank tag prefix -> WordNet part of speech
_WORDNET_POS = {'J': 'a', 'V': 'v', 'N': 'n', 'R': 'r'}


class MorphologyLoadError(Exception):
    """The analyzer's dictionary resources are unavailable."""
    pass


class MorphologyAnalyzer:
    """Interface of a morphological analyzer."""

    # Tags of closed-class words that carry no search signal
    FUNCTION_WORD_TAGS = frozenset()

    def normal_forms(self, word: str) -> List[str]:
        """Candidate base forms of `word`; the first one is the primary lemma."""
        raise NotImplementedError

    def part_of_speech(self, word: str) -> str:
        raise NotImplementedError

    def lemma(self, word: str) -> str:
        return self.normal_forms(word)[0]

    def is_function_word(self, word: str) -> bool:
        return self.part_of_speech(word) in self.FUNCTION_WORD_TAGS


class NltkMorphology(MorphologyAnalyzer):
    """
    English analyzer on top of NLTK: the Penn tagger decides the part of
    speech, WordNet supplies the base form. Conjunctions (CC), prepositions
    (IN) and interjections (UH) are function words.

    Requires the `wordnet` corpus and the averaged perceptron tagger; their
    absence is reported by the constructor as MorphologyLoadError.
    """

    FUNCTION_WORD_TAGS = frozenset({'CC', 'IN', 'UH'})

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        try:
            wordnet.ensure_loaded()
            self.tagger = PerceptronTagger()
        except LookupError as e:
            raise MorphologyLoadError(f"NLTK resources missing: {e}") from e

        self.lemmatizer = WordNetLemmatizer()
        self._tags: Dict[str, str] = {}
        self._forms: Dict[str, List[str]] = {}
        self.logger.info("NLTK morphology loaded")

    def part_of_speech(self, word: str) -> str:
        tag = self._tags.get(word)
        if tag is None:
            tag = self.tagger.tag([word])[0][1]
            self._tags[word] = tag
        return tag

    def normal_forms(self, word: str) -> List[str]:
        forms = self._forms.get(word)
        if forms is None:
            primary_pos = _WORDNET_POS.get(self.part_of_speech(word)[:1], 'n')
            forms = [self.lemmatizer.lemmatize(word, primary_pos)]
            for pos in ('n', 'v', 'a', 'r'):
                form = self.lemmatizer.lemmatize(word, pos)
                if form not in forms:
                    forms.append(form)
            self._forms[word] = forms
        return forms
