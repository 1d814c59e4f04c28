"""Table of contents tree construction from flat leveled index entries."""
from typing import Iterable, List

from lexivault.models.document import IndexEntry, TocNode


def build_toc_tree(entries: Iterable[IndexEntry]) -> List[TocNode]:
    """
    Nest a flat, reading-ordered list of index entries into a forest.

    An entry becomes a child of the closest preceding entry with a strictly
    smaller level, so skipped levels (1 followed by 3) still nest directly.

    Args:
        entries: Index entries in document reading order

    Returns:
        Root nodes in input order
    """
    roots: List[TocNode] = []
    stack: List[TocNode] = []

    for entry in entries:
        node = TocNode(label=entry.label, level=entry.level, target_page=entry.target_page)

        while stack and stack[-1].level >= node.level:
            stack.pop()

        if stack:
            stack[-1].children.append(node)
        else:
            roots.append(node)
        stack.append(node)

    return roots
