"""
In-memory crawl tree, grown lazily as links are discovered.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List


class NodeState(Enum):
    """Lifecycle of a crawl node inside the site walker."""
    UNVISITED = "unvisited"
    EXPANDING = "expanding"
    FORKED = "forked"
    JOINED = "joined"


@dataclass
class CrawlNode:
    url: str
    state: NodeState = NodeState.UNVISITED
    children: List['CrawlNode'] = field(default_factory=list)

    def add_child(self, url: str) -> 'CrawlNode':
        # Only the task expanding this node appends; list.append is atomic on the event loop.
        child = CrawlNode(url=url)
        self.children.append(child)
        return child

    def size(self) -> int:
        """Number of nodes in this subtree."""
        return 1 + sum(child.size() for child in self.children)
