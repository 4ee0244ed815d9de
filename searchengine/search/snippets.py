"""
Snippet extraction for search results.
"""

import html
import re
from typing import Iterable

from ..crawler.parser import ContentParser


class SnippetBuilder:
    """
    Finds the first text node of a page containing a phrase and cuts a window
    of `window` characters on each side of it.
    """

    def __init__(self, parser: ContentParser, window: int = 30):
        self.parser = parser
        self.window = window

    def build(self, html_content: str, phrase: str) -> str:
        """Snippet for `phrase` in the page, or "" when no text node contains it."""
        if not phrase:
            return ""
        return self.build_from_nodes(self.parser.own_texts(html_content), phrase)

    def build_from_nodes(self, nodes: Iterable[str], phrase: str) -> str:
        phrase = phrase.casefold()
        pattern = re.compile(
            r".{0,%d}%s.{0,%d}" % (self.window, re.escape(phrase), self.window), re.DOTALL)

        for node in nodes:
            match = pattern.search(node.casefold())
            if match is None:
                continue
            fragment = match.group()
            start = fragment.index(phrase)
            return "...{}<b>{}</b>{}...".format(
                html.escape(fragment[:start]),
                html.escape(phrase),
                html.escape(fragment[start + len(phrase):]),
            )
        return ""
